"""Service layer exports."""

from .analytics import AnalyticsAggregator, AnalyticsBundle, AnalyticsService
from .categories import CategoryDetails, CategoryService
from .store import CategoryStore, TicketStore
from .tickets import TicketPage, TicketService
from .tracker import MutationTracker

__all__ = [
    "AnalyticsAggregator",
    "AnalyticsBundle",
    "AnalyticsService",
    "CategoryDetails",
    "CategoryService",
    "CategoryStore",
    "MutationTracker",
    "TicketPage",
    "TicketService",
    "TicketStore",
]
