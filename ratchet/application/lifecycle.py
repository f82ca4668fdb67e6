from collections.abc import Iterable
from types import TracebackType
from typing import Protocol, runtime_checkable


@runtime_checkable
class HasLifecycle(Protocol):
    async def on_startup(self) -> None:
        """Called when the application is started."""
        ...

    async def on_shutdown(self) -> None:
        """Called when the application is shutdown."""
        ...


class Lifecycle:
    """Starts and stops a group of components.

    Components are started in the order given and shutdown in reverse
    order, so a component can rely on the ones listed before it. Objects
    not implementing ``HasLifecycle`` are ignored.

    Example:
        >>> async with Lifecycle([mongo_config, outbox, rabbit_bus]):
        ...     await serve()
    """

    def __init__(self, components: Iterable[object]):
        self.components = [c for c in components if isinstance(c, HasLifecycle)]

    async def startup(self) -> None:
        for component in self.components:
            await component.on_startup()

    async def shutdown(self) -> None:
        for component in reversed(self.components):
            await component.on_shutdown()

    async def __aenter__(self) -> "Lifecycle":
        await self.startup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.shutdown()
