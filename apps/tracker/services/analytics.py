"""Read-only summaries over a filtered set of tickets."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timezone
from typing import Iterable, Mapping, Protocol, Sequence

from opentelemetry import trace

from apps.tracker.domain.errors import ValidationError
from apps.tracker.domain.filters import TicketFilter
from apps.tracker.domain.models import Actor, Role, Ticket, TicketPriority, TicketStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True, slots=True)
class DurationStats:
    """Summary of observed durations in seconds."""

    count: int = 0
    average: float | None = None
    minimum: float | None = None
    maximum: float | None = None

    @classmethod
    def of(cls, values: Sequence[float]) -> "DurationStats":
        if not values:
            return cls()
        return cls(
            count=len(values),
            average=sum(values) / len(values),
            minimum=min(values),
            maximum=max(values),
        )


@dataclass(frozen=True, slots=True)
class Overview:
    total: int
    status_distribution: Mapping[TicketStatus, int]
    priority_distribution: Mapping[TicketPriority, int]
    average_response_time: float | None
    average_resolution_time: float | None


@dataclass(frozen=True, slots=True)
class CategoryCount:
    category_id: str
    category_name: str
    count: int


@dataclass(frozen=True, slots=True)
class TrendPoint:
    date: date
    count: int


@dataclass(frozen=True, slots=True)
class PriorityResponse:
    priority: TicketPriority
    stats: DurationStats


@dataclass(frozen=True, slots=True)
class AnalyticsBundle:
    overview: Overview
    category_distribution: Sequence[CategoryCount] = field(default_factory=tuple)
    time_trend: Sequence[TrendPoint] = field(default_factory=tuple)
    response_performance: Sequence[PriorityResponse] = field(default_factory=tuple)


class AnalyticsAggregator:
    """Pure aggregation functions; the ticket set is never mutated."""

    def overview(self, tickets: Iterable[Ticket]) -> Overview:
        status_counts: Counter[TicketStatus] = Counter()
        priority_counts: Counter[TicketPriority] = Counter()
        response_times: list[float] = []
        resolution_times: list[float] = []
        total = 0
        for ticket in tickets:
            total += 1
            status_counts[ticket.status] += 1
            priority_counts[ticket.priority] += 1
            if ticket.response_time is not None:
                response_times.append(ticket.response_time)
            if ticket.resolution_time is not None:
                resolution_times.append(ticket.resolution_time)

        return Overview(
            total=total,
            status_distribution={status: status_counts[status] for status in TicketStatus},
            priority_distribution={priority: priority_counts[priority] for priority in TicketPriority},
            average_response_time=DurationStats.of(response_times).average,
            average_resolution_time=DurationStats.of(resolution_times).average,
        )

    def category_distribution(
        self, tickets: Iterable[Ticket], names: Mapping[str, str]
    ) -> list[CategoryCount]:
        # Counter keeps first-seen order, and sorted() is stable on ties.
        counts: Counter[str] = Counter(ticket.category for ticket in tickets if ticket.category in names)
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [
            CategoryCount(category_id=category_id, category_name=names[category_id], count=count)
            for category_id, count in ranked
        ]

    def time_trend(self, tickets: Iterable[Ticket]) -> list[TrendPoint]:
        counts: Counter[date] = Counter(
            ticket.created_at.astimezone(timezone.utc).date() for ticket in tickets
        )
        return [TrendPoint(date=day, count=counts[day]) for day in sorted(counts)]

    def response_performance_by_priority(self, tickets: Iterable[Ticket]) -> list[PriorityResponse]:
        samples: dict[TicketPriority, list[float]] = {}
        for ticket in tickets:
            response_time = ticket.response_time
            if response_time is None:
                continue
            samples.setdefault(ticket.priority, []).append(response_time)
        return [
            PriorityResponse(priority=priority, stats=DurationStats.of(samples[priority]))
            for priority in TicketPriority
            if priority in samples
        ]

    def bundle(self, tickets: Sequence[Ticket], names: Mapping[str, str]) -> AnalyticsBundle:
        return AnalyticsBundle(
            overview=self.overview(tickets),
            category_distribution=self.category_distribution(tickets, names),
            time_trend=self.time_trend(tickets),
            response_performance=self.response_performance_by_priority(tickets),
        )


class TicketSource(Protocol):
    async def find(self, ticket_filter: TicketFilter, *, include_history: bool = True) -> list[Ticket]:
        ...


class CategoryNames(Protocol):
    async def names(self, category_ids: Iterable[str]) -> dict[str, str]:
        ...


class AnalyticsService:
    """Load the filtered ticket set once and compute the analytics bundle."""

    def __init__(
        self,
        tickets: TicketSource,
        categories: CategoryNames,
        *,
        aggregator: AnalyticsAggregator | None = None,
        timeout: float | None = None,
    ) -> None:
        self._tickets = tickets
        self._categories = categories
        self._aggregator = aggregator or AnalyticsAggregator()
        self._timeout = timeout

    async def get_analytics(
        self,
        ticket_filter: TicketFilter,
        actor: Actor,
        *,
        timeout: float | None = None,
    ) -> AnalyticsBundle:
        if actor.role is Role.CLIENT:
            ticket_filter = ticket_filter.restricted_to_owner(actor.id)
        limit = timeout if timeout is not None else self._timeout
        if limit is not None and limit <= 0:
            raise ValidationError("timeout must be positive", field="timeout")

        with tracer.start_as_current_span("analytics.get_analytics"):
            if limit is None:
                return await self._compute(ticket_filter)
            try:
                return await asyncio.wait_for(self._compute(ticket_filter), timeout=limit)
            except asyncio.TimeoutError:
                logger.warning("Analytics query exceeded %.2fs and was cancelled", limit)
                raise

    async def _compute(self, ticket_filter: TicketFilter) -> AnalyticsBundle:
        tickets = await self._tickets.find(ticket_filter, include_history=False)
        names = await self._categories.names(ticket.category for ticket in tickets)
        bundle = self._aggregator.bundle(tickets, names)
        logger.info("Computed analytics over %d tickets", bundle.overview.total)
        return bundle
