"""API routers."""

from marketplace_service.routers import (
    earnings,
    health,
    ledger,
    offers,
    payments,
    taskers,
    tasks,
)

__all__ = ["earnings", "health", "ledger", "offers", "payments", "taskers", "tasks"]
