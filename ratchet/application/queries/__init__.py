from .bus import LocalQueryBus, QueryHandler

__all__ = ["LocalQueryBus", "QueryHandler"]
