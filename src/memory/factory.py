"""Build the memory store from settings, once, at startup."""

from __future__ import annotations

import logging

from src.config import Settings, settings
from src.db import DatabaseTarget
from src.memory.backends.keyed import KeyedBackend
from src.memory.backends.relational import RelationalBackend
from src.memory.backends.volatile import VolatileBackend
from src.memory.retention import RetentionPolicy
from src.memory.store import MemoryStore

logger = logging.getLogger(__name__)


def build_store(cfg: Settings | None = None) -> MemoryStore:
    """Construct the tier chain the configuration asks for.

    Disabled tiers are passed as ``None`` so the selector still knows which
    preference slot each tier occupies.
    """
    cfg = cfg or settings

    keyed = KeyedBackend(cfg.keyed_store_path) if cfg.keyed_store_enabled else None
    relational = None
    if cfg.relational_store_enabled:
        target = DatabaseTarget.from_settings(cfg)
        relational = RelationalBackend(target)
        logger.info("Relational tier: %s", target.describe())

    if keyed is None and relational is None:
        logger.warning("No durable tier configured — history will not survive a restart")
    else:
        logger.info("Memory tiers (most preferred first): %s", ", ".join(cfg.describe_tiers()))

    return MemoryStore(
        durable=[keyed, relational],
        cache=VolatileBackend(),
        retention=RetentionPolicy(cfg.retention_window),
        admin_recent_limit=cfg.admin_recent_limit,
    )
