from .bus import EventHandler, LocalEventBus

__all__ = ["EventHandler", "LocalEventBus"]
