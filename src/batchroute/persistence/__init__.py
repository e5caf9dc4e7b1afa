"""Batch stores and file exports."""

from __future__ import annotations

from ..config import settings
from .filesystem import FileStorage
from .memory import InMemoryBatchStore
from .store import BatchStore
from .supabase_store import SupabaseBatchStore


def build_store(backend: str | None = None) -> BatchStore:
    """Create the batch store selected by ``BR_STORE_BACKEND``."""

    backend = backend or settings.store_backend
    if backend == "supabase":
        from ..db.supabase import get_supabase_client

        return SupabaseBatchStore(get_supabase_client())
    if backend == "memory":
        return InMemoryBatchStore()
    raise ValueError(f"Unsupported store backend '{backend}'")


__all__ = ["BatchStore", "FileStorage", "InMemoryBatchStore", "SupabaseBatchStore", "build_store"]
