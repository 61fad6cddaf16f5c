"""
Notification gateway -- fire-and-forget fan-out to user, ride and driver-pool
topics.

Engines publish only after their unit of work has committed, through
``SafeGateway``: a failed publish is logged there and swallowed, since it must
never undo or mask a state change that is already durable.  The concrete
gateways raise.

Topics
------
* ``user_<id>``  -- one user's devices
* ``ride_<id>``  -- both parties of one ride
* ``drivers``    -- every connected driver
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

DRIVER_POOL_TOPIC = "drivers"


def user_topic(user_id: int) -> str:
    return f"user_{user_id}"


def ride_topic(ride_id: int) -> str:
    return f"ride_{ride_id}"


class NotificationGateway(Protocol):
    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None: ...


class RedisNotificationGateway:
    """Publishes ``{"event": ..., "data": ...}`` JSON messages on Redis pub/sub.

    Connection errors propagate; wrap it in ``SafeGateway``.
    """

    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps({"event": event, "data": payload}, default=str)
        await self.redis.publish(topic, message)


@dataclass(frozen=True)
class PublishedEvent:
    topic: str
    event: str
    payload: dict[str, Any]


class InMemoryNotificationGateway:
    """Keeps every published event; used for local runs without Redis."""

    def __init__(self) -> None:
        self.events: list[PublishedEvent] = []

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        self.events.append(PublishedEvent(topic, event, payload))

    def on(self, topic: str) -> list[PublishedEvent]:
        return [e for e in self.events if e.topic == topic]

    def named(self, event: str) -> list[PublishedEvent]:
        return [e for e in self.events if e.event == event]


class SafeGateway:
    """Wraps any gateway so that a raising ``publish`` is logged, not propagated."""

    def __init__(self, inner: NotificationGateway):
        self.inner = inner

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        try:
            await self.inner.publish(topic, event, payload)
        except Exception:
            logger.exception("Notification gateway failed on %s/%s", topic, event)


def ride_payload(ride) -> dict[str, Any]:
    """JSON-safe snapshot of a ride row for event payloads."""
    return {
        "ride_id": ride.id,
        "passenger_id": ride.passenger_id,
        "driver_id": ride.driver_id,
        "status": _value(ride.status),
        "origin": {
            "lat": ride.origin_lat,
            "lng": ride.origin_lng,
            "address": ride.origin_address,
        },
        "destination": {
            "lat": ride.dest_lat,
            "lng": ride.dest_lng,
            "address": ride.dest_address,
        },
        "distance_km": ride.distance_km,
        "ride_type": _value(ride.ride_type),
        "requested_price": _money(ride.requested_price),
        "committed_price": _money(ride.committed_price),
        "final_price": _money(ride.final_price),
        "payment_method": _value(ride.payment_method),
        "payment_status": _value(ride.payment_status),
    }


def proposal_payload(proposal) -> dict[str, Any]:
    return {
        "ride_id": proposal.ride_id,
        "sequence": proposal.sequence,
        "proposed_by": _value(proposal.proposed_by),
        "previous_price": _money(proposal.previous_price),
        "proposed_price": _money(proposal.proposed_price),
        "reason": proposal.reason,
        "status": _value(proposal.status),
        "response_reason": proposal.response_reason,
    }


def _value(member):
    return getattr(member, "value", member)


def _money(amount):
    return None if amount is None else str(amount)
