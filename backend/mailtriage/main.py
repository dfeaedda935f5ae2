"""Mail Triage Engine — FastAPI Application."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mailtriage.api import analytics, chat, emails, labels, reminders, suggestions, sweep
from mailtriage.api.envelope import register_exception_handlers
from mailtriage.config import Settings
from mailtriage.context import AppContext

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("mail-triage-engine")


def create_app(settings: Optional[Settings] = None, context: Optional[AppContext] = None) -> FastAPI:
    """Build the application. A supplied context is used as-is and left open on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_context = context is None
        ctx = context or AppContext.create(settings or Settings())
        app.state.ctx = ctx
        cfg = ctx.settings
        logging.getLogger().setLevel(cfg.log_level.upper())

        # Startup
        logger.info("=" * 60)
        logger.info("Mail Triage Engine starting up")
        logger.info(f"Database: {cfg.database_url.split('@')[-1]}")
        logger.info(f"LLM providers: {ctx.llm.model if ctx.llm else 'none'}")
        logger.info(f"Embeddings: {ctx.embedder.model_tag or 'disabled'}")
        logger.info(f"Sweep: every {cfg.sweep_interval_minutes} min, batch {cfg.sweep_batch_size}")
        logger.info("=" * 60)

        await ctx.startup()
        logger.info("Database initialized")

        sweep_task: Optional[asyncio.Task] = None
        if cfg.sweep_enabled:
            sweep_task = asyncio.create_task(ctx.sweep.run_forever(run_immediately=cfg.sweep_on_startup))
            logger.info("Periodic sweep task started")

        yield

        # Shutdown
        logger.info("Shutting down...")
        ctx.sweep.request_shutdown()
        if sweep_task:
            await sweep_task
        if owns_context:
            await ctx.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Mail Triage Engine",
        description="Email classification, labeling and retrieval backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    if context is not None:
        app.state.ctx = context

    # CORS for the dashboard frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3100", "http://127.0.0.1:3100"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Register routers
    app.include_router(emails.router)
    app.include_router(sweep.router)
    app.include_router(suggestions.router)
    app.include_router(labels.router)
    app.include_router(analytics.router)
    app.include_router(chat.router)
    app.include_router(reminders.router)

    @app.get("/")
    async def root():
        """Root endpoint — basic info."""
        return {
            "app": "Mail Triage Engine",
            "version": "0.1.0",
            "status": "running",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        ctx = getattr(app.state, "ctx", None)
        return {
            "status": "healthy",
            "sweep_running": ctx.sweep.is_running if ctx else False,
            "embeddings_enabled": ctx.embedder.enabled if ctx else False,
        }

    return app


app = create_app()
