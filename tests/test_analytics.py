from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from apps.tracker.domain.errors import ValidationError
from apps.tracker.domain.filters import TicketFilter
from apps.tracker.domain.models import (
    Actor,
    Comment,
    Role,
    Ticket,
    TicketPriority,
    TicketStatus,
)
from apps.tracker.services.analytics import AnalyticsAggregator, AnalyticsService, DurationStats

BASE = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ticket(
    ticket_id: str,
    *,
    category: str = "cat-bug",
    priority: TicketPriority = TicketPriority.MEDIUM,
    status: TicketStatus = TicketStatus.NEW,
    created_at: datetime = BASE,
    first_reply_after: timedelta | None = None,
    resolved_after: timedelta | None = None,
    submitted_by: str = "client",
) -> Ticket:
    comments = ()
    if first_reply_after is not None:
        comments = (Comment(id=f"{ticket_id}-c", text="On it", author="support", created_at=created_at + first_reply_after),)
    return Ticket(
        id=ticket_id,
        title="Something broke",
        description="Something broke badly today",
        category=category,
        priority=priority,
        status=status,
        submitted_by=submitted_by,
        created_at=created_at,
        updated_at=created_at,
        resolved_at=None if resolved_after is None else created_at + resolved_after,
        comments=comments,
    )


aggregator = AnalyticsAggregator()


def test_overview_distributions_sum_to_total():
    tickets = [
        _ticket("t1", status=TicketStatus.RESOLVED, resolved_after=timedelta(hours=2)),
        _ticket("t2", status=TicketStatus.RESOLVED, resolved_after=timedelta(hours=4)),
        _ticket("t3", priority=TicketPriority.HIGH, first_reply_after=timedelta(minutes=30)),
    ]

    overview = aggregator.overview(tickets)

    assert overview.total == 3
    assert sum(overview.status_distribution.values()) == 3
    assert sum(overview.priority_distribution.values()) == 3
    assert overview.status_distribution[TicketStatus.RESOLVED] == 2
    assert overview.status_distribution[TicketStatus.CLOSED] == 0
    assert overview.average_resolution_time == 3 * 3600
    assert overview.average_response_time == 30 * 60


def test_overview_of_empty_set_has_no_averages():
    overview = aggregator.overview([])

    assert overview.total == 0
    assert overview.average_response_time is None
    assert overview.average_resolution_time is None
    assert set(overview.status_distribution) == set(TicketStatus)


def test_category_distribution_orders_by_count_and_drops_unknown():
    tickets = [
        _ticket("t1", category="cat-ui"),
        _ticket("t2", category="cat-bug"),
        _ticket("t3", category="cat-bug"),
        _ticket("t4", category="cat-gone"),
        _ticket("t5", category="cat-docs"),
    ]
    names = {"cat-bug": "Bug", "cat-ui": "UI", "cat-docs": "Docs"}

    result = aggregator.category_distribution(tickets, names)

    assert [(item.category_name, item.count) for item in result] == [("Bug", 2), ("UI", 1), ("Docs", 1)]


def test_time_trend_groups_by_utc_day():
    late_evening = datetime(2024, 3, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    tickets = [
        _ticket("t1", created_at=datetime(2024, 3, 2, 1, 0, tzinfo=timezone.utc)),
        _ticket("t2", created_at=late_evening),
        _ticket("t3", created_at=BASE),
    ]

    trend = aggregator.time_trend(tickets)

    assert [(point.date, point.count) for point in trend] == [(date(2024, 3, 1), 1), (date(2024, 3, 2), 2)]


def test_response_performance_by_priority_skips_unanswered():
    tickets = [
        _ticket("t1", priority=TicketPriority.HIGH, first_reply_after=timedelta(minutes=10)),
        _ticket("t2", priority=TicketPriority.HIGH, first_reply_after=timedelta(minutes=30)),
        _ticket("t3", priority=TicketPriority.LOW),
        _ticket("t4", priority=TicketPriority.CRITICAL, first_reply_after=timedelta(minutes=5)),
    ]

    result = aggregator.response_performance_by_priority(tickets)

    assert [item.priority for item in result] == [TicketPriority.HIGH, TicketPriority.CRITICAL]
    assert result[0].stats == DurationStats(count=2, average=1200.0, minimum=600.0, maximum=1800.0)


@pytest.mark.asyncio
async def test_get_analytics_restricts_clients_to_own_tickets():
    source = AsyncMock()
    source.find = AsyncMock(return_value=[_ticket("t1")])
    categories = AsyncMock()
    categories.names = AsyncMock(return_value={"cat-bug": "Bug"})
    service = AnalyticsService(source, categories)

    bundle = await service.get_analytics(TicketFilter(), Actor(id="client", role=Role.CLIENT))

    passed_filter = source.find.await_args.args[0]
    assert passed_filter.submitted_by == "client"
    assert source.find.await_args.kwargs == {"include_history": False}
    assert bundle.overview.total == 1
    assert bundle.category_distribution[0].category_name == "Bug"


@pytest.mark.asyncio
async def test_get_analytics_cancels_after_timeout():
    async def slow_find(*args, **kwargs):
        await asyncio.sleep(1)
        return []

    source = AsyncMock()
    source.find = slow_find
    service = AnalyticsService(source, AsyncMock())

    with pytest.raises(asyncio.TimeoutError):
        await service.get_analytics(TicketFilter(), Actor(id="manager", role=Role.MANAGER), timeout=0.01)

    with pytest.raises(ValidationError):
        await service.get_analytics(TicketFilter(), Actor(id="manager", role=Role.MANAGER), timeout=0)


@pytest.mark.asyncio
async def test_analytics_over_store(analytics_service, ticket_service, bug_category, client_user, support):
    fields = {
        "title": "Login page broken",
        "description": "The login form returns a blank page",
        "category": "cat-bug",
        "priority": "high",
    }
    ticket = await ticket_service.create_ticket(fields, client_user)
    await ticket_service.add_comment(ticket.id, "Investigating", support)
    await ticket_service.change_status(ticket.id, "resolved", support)

    bundle = await analytics_service.get_analytics(TicketFilter(), support)

    assert bundle.overview.total == 1
    assert bundle.overview.status_distribution[TicketStatus.RESOLVED] == 1
    assert bundle.overview.average_response_time is not None
    assert bundle.category_distribution[0].category_id == "cat-bug"
    assert bundle.response_performance[0].priority is TicketPriority.HIGH
