"""Router registration for the FastAPI application."""

from fastapi import FastAPI

from . import recurring_schedules, transactions


def register_routers(app: FastAPI) -> None:
    """Attach all API routes to the FastAPI application."""

    app.include_router(recurring_schedules.router, prefix="/api")
    app.include_router(transactions.router, prefix="/api")
