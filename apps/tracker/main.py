from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from apps.tracker.api.errors import register_error_handlers
from apps.tracker.api.routes import analytics, categories, ping, tickets
from apps.tracker.core.config import get_settings
from apps.tracker.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.tracker.domain.errors import PersistenceError
from apps.tracker.middleware.rbac import RBACMiddleware
from apps.tracker.services.analytics import AnalyticsService
from apps.tracker.services.categories import CategoryService
from apps.tracker.services.store import CategoryStore, TicketStore
from apps.tracker.services.tickets import TicketService
from apps.tracker.services.tracker import MutationTracker


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure a PostgreSQL DSN uses the asyncpg driver; other URLs pass through."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    app.state.ticket_service = None
    app.state.category_service = None
    app.state.analytics_service = None
    db_engine = None
    try:
        db_engine = create_async_engine(
            _to_asyncpg_dsn(settings.database_url), echo=settings.database_echo, future=True
        )
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        ticket_store = TicketStore(session_factory, engine=db_engine)
        category_store = CategoryStore(session_factory)
        await ticket_store.ensure_schema()

        tracker = MutationTracker(category_store)
        app.state.ticket_service = TicketService(
            ticket_store, tracker, max_page_size=settings.max_page_size
        )
        app.state.category_service = CategoryService(category_store, ticket_store)
        app.state.analytics_service = AnalyticsService(
            ticket_store, category_store, timeout=settings.analytics_timeout_seconds
        )
    except (PersistenceError, SQLAlchemyError):
        logger.exception("Database initialisation failed; tracker services are unavailable")
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    register_error_handlers(app)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(categories.router)
    app.include_router(analytics.router)
    return app


app = create_app()
