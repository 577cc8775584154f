"""API module - route handlers and common dependencies."""

from fastapi import FastAPI

from points_ledger.api.deps import CurrentUserId, InternalService, Ledger, Rewards

__all__ = [
    "CurrentUserId",
    "InternalService",
    "Ledger",
    "Rewards",
    "register_routers",
]


def register_routers(app: FastAPI) -> None:
    """Register all API routers to the application.

    Args:
        app: FastAPI application instance
    """
    from points_ledger.api.points import router as points_router
    from points_ledger.api.referrals import router as referrals_router

    app.include_router(points_router, prefix="/api")
    app.include_router(referrals_router, prefix="/api")
