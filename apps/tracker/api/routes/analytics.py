from __future__ import annotations

import asyncio
import datetime as dt

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from apps.tracker.dependencies.auth import CurrentActor
from apps.tracker.dependencies.services import AnalyticsServiceDep
from apps.tracker.domain.filters import TicketFilter
from apps.tracker.domain.models import TicketPriority, TicketStatus
from apps.tracker.services.analytics import AnalyticsBundle

router = APIRouter(prefix="/analytics", tags=["analytics"])


class OverviewModel(BaseModel):
    total: int
    status_distribution: dict[TicketStatus, int]
    priority_distribution: dict[TicketPriority, int]
    average_response_time: float | None
    average_resolution_time: float | None


class CategoryCountModel(BaseModel):
    category_id: str
    category_name: str
    count: int


class TrendPointModel(BaseModel):
    date: dt.date
    count: int


class PriorityResponseModel(BaseModel):
    priority: TicketPriority
    count: int
    average: float | None
    minimum: float | None
    maximum: float | None


class AnalyticsResponse(BaseModel):
    overview: OverviewModel
    category_distribution: list[CategoryCountModel]
    time_trend: list[TrendPointModel]
    response_performance: list[PriorityResponseModel]

    @classmethod
    def from_bundle(cls, bundle: AnalyticsBundle) -> "AnalyticsResponse":
        overview = bundle.overview
        return cls(
            overview=OverviewModel(
                total=overview.total,
                status_distribution=dict(overview.status_distribution),
                priority_distribution=dict(overview.priority_distribution),
                average_response_time=overview.average_response_time,
                average_resolution_time=overview.average_resolution_time,
            ),
            category_distribution=[
                CategoryCountModel(category_id=item.category_id, category_name=item.category_name, count=item.count)
                for item in bundle.category_distribution
            ],
            time_trend=[TrendPointModel(date=point.date, count=point.count) for point in bundle.time_trend],
            response_performance=[
                PriorityResponseModel(
                    priority=item.priority,
                    count=item.stats.count,
                    average=item.stats.average,
                    minimum=item.stats.minimum,
                    maximum=item.stats.maximum,
                )
                for item in bundle.response_performance
            ],
        )


@router.get("", response_model=AnalyticsResponse)
async def get_analytics(
    service: AnalyticsServiceDep,
    actor: CurrentActor,
    status_filter: list[str] | None = Query(default=None, alias="status"),
    priority: list[str] | None = Query(default=None),
    category: list[str] | None = Query(default=None),
    created_from: dt.datetime | None = Query(default=None),
    created_to: dt.datetime | None = Query(default=None),
) -> AnalyticsResponse:
    ticket_filter = TicketFilter.build(
        created_from=created_from,
        created_to=created_to,
        statuses=status_filter,
        priorities=priority,
        categories=category,
    )
    try:
        bundle = await service.get_analytics(ticket_filter, actor)
    except asyncio.TimeoutError as exc:
        raise HTTPException(status_code=504, detail="Analytics query timed out") from exc
    return AnalyticsResponse.from_bundle(bundle)
