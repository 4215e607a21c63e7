"""Broadcast bus implementations and factory."""

import logging

from myrmidon.channels.base import BaseBus as BaseBus
from myrmidon.channels.memory import InProcessBus as InProcessBus

logger = logging.getLogger("Myrmidon.Channels")


def get_bus(config: dict) -> BaseBus:
    """Build the bus named by ``config["type"]`` (``memory`` or ``mqtt``).

    Raises:
        ValueError: unknown bus type.
    """
    bus_type = config.get("type", "memory")
    if bus_type == "memory":
        return InProcessBus(config)
    if bus_type == "mqtt":
        from myrmidon.channels.mqtt_channel import MQTTBus

        return MQTTBus(config)
    raise ValueError(f"Unknown channel type: {bus_type!r}")
