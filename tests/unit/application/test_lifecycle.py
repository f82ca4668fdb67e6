"""Unit tests for component lifecycle management."""

import pytest

from ratchet.application import HasLifecycle, Lifecycle


class Component:
    def __init__(self, name: str, log: list[str]):
        self.name = name
        self.log = log

    async def on_startup(self) -> None:
        self.log.append(f"start {self.name}")

    async def on_shutdown(self) -> None:
        self.log.append(f"stop {self.name}")


@pytest.mark.asyncio
async def test_starts_in_order_and_stops_in_reverse():
    """Components start in the given order and stop in reverse."""
    log: list[str] = []

    async with Lifecycle([Component("store", log), Component("outbox", log)]):
        log.append("serving")

    assert log == ["start store", "start outbox", "serving", "stop outbox", "stop store"]


def test_ignores_objects_without_lifecycle():
    """Plain objects are not managed."""
    log: list[str] = []
    component = Component("store", log)

    lifecycle = Lifecycle([object(), component])

    assert lifecycle.components == [component]
    assert isinstance(component, HasLifecycle)
