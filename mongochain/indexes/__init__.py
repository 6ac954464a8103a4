"""Index declarations and the reconciler that converges live indexes to them."""

from mongochain.indexes.reconciler import (
    IndexPlan,
    apply_collection_indexes,
    apply_shared_collection_indexes,
    plan_index_changes,
)

__all__ = ["IndexPlan", "apply_collection_indexes", "apply_shared_collection_indexes", "plan_index_changes"]
