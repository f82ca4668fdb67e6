from .bus import CommandHandler, LocalCommandBus
from .context import CommandContextManager, ExecutionContextManager

__all__ = [
    "CommandContextManager",
    "CommandHandler",
    "ExecutionContextManager",
    "LocalCommandBus",
]
