"""Route modules exposed by the tracker API."""

from . import analytics, categories, ping, tickets

__all__ = ["analytics", "categories", "ping", "tickets"]
