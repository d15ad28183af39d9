from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.database import SessionLocal
from .core.logging import configure_logging
from .routers import register_routers
from .services.scheduler import RecurringScheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    scheduler = None
    if settings.RECURRING_SCHEDULER_ENABLED:
        scheduler = RecurringScheduler(
            SessionLocal,
            interval_seconds=settings.RECURRING_SCHEDULER_INTERVAL_SECONDS,
            batch_size=settings.RECURRING_BATCH_SIZE,
        )
        scheduler.start()
    app.state.recurring_scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


register_routers(app)
