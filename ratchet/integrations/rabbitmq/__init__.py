"""RabbitMQ integration for ratchet.

Installation:
    pip install ratchet[rabbitmq]

Usage:
    >>> from ratchet.integrations.rabbitmq import RabbitEventBus, RabbitSettings
    >>>
    >>> bus = RabbitEventBus(RabbitSettings(exchange_name="shop"))
    >>> await bus.init()
    >>> await bus.subscribe(ItemAdded, SendConfirmationEmail())
    >>>
    >>> outbox = DocumentOutbox(store, bus.publish_all)
"""

from .bus import RabbitEventBus
from .config import RabbitSettings
from .connection import RabbitConnection

__all__ = ["RabbitConnection", "RabbitEventBus", "RabbitSettings"]
