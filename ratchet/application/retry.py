"""Retry policy and background dispatch for bus handlers."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RetryMechanism(ABC):
    """Maps an attempt number to the delay before that attempt."""

    @abstractmethod
    def get_delay(self, attempt: int) -> float:
        """Get the delay in seconds before ``attempt`` (1-indexed)."""
        ...


class ExponentialBackoff(RetryMechanism):
    """Doubles the delay on every attempt.

    ``delay = initial_delay * 2 ** (attempt - 1)``

    Examples:
        >>> backoff = ExponentialBackoff(0.5)
        >>> [backoff.get_delay(n) for n in (1, 2, 3)]
        [0.5, 1.0, 2.0]
    """

    __slots__ = ("initial_delay",)

    def __init__(self, initial_delay: float):
        if initial_delay < 0:
            raise ValueError("initial_delay must be non-negative")
        self.initial_delay = initial_delay

    def get_delay(self, attempt: int) -> float:
        return self.initial_delay * 2 ** (attempt - 1)


class RetrySettings(BaseSettings):
    """Retry configuration shared by the in-process buses.

    Attributes:
        max_attempts: Total number of attempts per handler (initial + retries).
        initial_delay: Delay in seconds before the first retry, doubled on
            every further retry.
    """

    model_config = SettingsConfigDict(env_prefix="RATCHET_RETRY_")

    max_attempts: int = Field(default=1, ge=1)
    initial_delay: float = Field(default=0.5, ge=0)

    def backoff(self) -> ExponentialBackoff:
        return ExponentialBackoff(self.initial_delay)


async def retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    backoff: RetryMechanism,
    handler_name: str,
    message_name: str,
    kind: str,
    logger: logging.Logger = LOGGER,
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    Each failure that will be retried logs one warning and sleeps for the
    backoff delay of the next attempt. The exception of the last attempt is
    re-raised to the caller.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt.
        max_attempts: Total attempts including the first one.
        backoff: Delay policy between attempts.
        handler_name: Handler name used in log messages.
        message_name: Routing key of the message being handled.
        kind: "event" or "command", used in log messages.
        logger: Logger receiving retry warnings.

    Returns:
        The result of the first successful attempt.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception:
            if attempt >= max_attempts:
                raise
            attempt += 1
            delay = backoff.get_delay(attempt)
            logger.warning(
                f"{handler_name} failed to handle {message_name} {kind}. "
                f"Attempt {attempt}/{max_attempts}. Delaying for {int(delay * 1000)}ms."
            )
            await asyncio.sleep(delay)


class TaskSupervisor:
    """Owns fire-and-forget dispatch tasks.

    Tasks are kept referenced until they finish so they are never garbage
    collected mid-flight, can be awaited with ``drain`` and are cancelled by
    ``close`` on shutdown.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel every pending task and wait for the cancellations."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
