"""Conversation memory — record model, storage tiers, retention, and the store facade."""

from src.memory.errors import BackendCorrupt, BackendError, BackendUnavailable
from src.memory.factory import build_store
from src.memory.models import AdminSnapshot, InteractionRecord, PromptValue
from src.memory.retention import RetentionPolicy
from src.memory.store import MemoryStore
from src.memory.tiers import TierSelector, TierState

__all__ = [
    "AdminSnapshot",
    "BackendCorrupt",
    "BackendError",
    "BackendUnavailable",
    "InteractionRecord",
    "MemoryStore",
    "PromptValue",
    "RetentionPolicy",
    "TierSelector",
    "TierState",
    "build_store",
]
