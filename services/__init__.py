from .cache import TTLCache  # noqa: F401
from .cached_orchestrator import CachedPrAuditOrchestrator  # noqa: F401

__all__ = ["CachedPrAuditOrchestrator", "TTLCache"]
