from .store import LeaseLostError, PlanStore, PlanStoreError, SqlitePlanStore

__all__ = [
    "LeaseLostError",
    "PlanStore",
    "PlanStoreError",
    "SqlitePlanStore",
]
