"""API Routes Package."""

from api.routes import health, separations, reports

__all__ = [
    "health",
    "separations",
    "reports",
]
