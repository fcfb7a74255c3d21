from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from apps.tracker.services.analytics import AnalyticsService
from apps.tracker.services.categories import CategoryService
from apps.tracker.services.tickets import TicketService


def _service(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} service is not configured")
    return service


async def get_ticket_service(request: Request) -> TicketService:
    return _service(request, "ticket_service", "Ticket")


async def get_category_service(request: Request) -> CategoryService:
    return _service(request, "category_service", "Category")


async def get_analytics_service(request: Request) -> AnalyticsService:
    return _service(request, "analytics_service", "Analytics")


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
CategoryServiceDep = Annotated[CategoryService, Depends(get_category_service)]
AnalyticsServiceDep = Annotated[AnalyticsService, Depends(get_analytics_service)]
