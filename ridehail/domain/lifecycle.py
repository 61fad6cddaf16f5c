"""
Ride state machine and the authority rules layered on top of it.

Functions take any object exposing ``status``, ``passenger_id`` and
``driver_id`` so they work on ORM rows directly.

    searching -> accepted -> arrived -> started -> completed
    searching | accepted | started -> cancelled

``accepted`` is only reachable through the locked accept operation and
``completed`` only through settlement; the generic status update refuses
both.
"""

from __future__ import annotations

from typing import Optional

from .entities import Actor
from .enums import RIDE_TRANSITIONS, TERMINAL_STATUSES, RideStatus, Role
from .errors import Forbidden, InvalidRideState, InvalidTransition

DEDICATED_TRANSITIONS = {
    RideStatus.ACCEPTED: "accept",
    RideStatus.COMPLETED: "complete",
}


def check_transition(current: RideStatus, new_status: RideStatus) -> None:
    """Raise ``InvalidTransition`` unless *current* -> *new_status* is an edge."""
    allowed = RIDE_TRANSITIONS.get(RideStatus(current), set())
    if new_status not in allowed:
        raise InvalidTransition(
            f"Cannot transition from {RideStatus(current).value} "
            f"to {RideStatus(new_status).value}"
        )


def ensure_not_terminal(ride) -> None:
    if RideStatus(ride.status) in TERMINAL_STATUSES:
        raise InvalidRideState(
            f"Ride {ride.id} is already {RideStatus(ride.status).value}"
        )


def participant_role(ride, actor: Actor) -> Optional[Role]:
    """Role *actor* plays on *ride*, or ``None`` for outsiders."""
    if actor.id == ride.passenger_id:
        return Role.PASSENGER
    if ride.driver_id is not None and actor.id == ride.driver_id:
        return Role.DRIVER
    return None


def authorize_status_change(ride, actor: Actor, new_status: RideStatus) -> Role:
    """
    Validate a manual status change and return the role it is made under.

    Outsiders are rejected before the transition is examined so that they
    learn nothing about the ride's state.
    """
    role = participant_role(ride, actor)
    if role is None and not actor.is_admin:
        raise Forbidden("You are not a participant of this ride")

    if new_status in DEDICATED_TRANSITIONS:
        raise InvalidTransition(
            f"Status {new_status.value} is set by the "
            f"{DEDICATED_TRANSITIONS[new_status]} operation"
        )
    check_transition(ride.status, new_status)

    if new_status is RideStatus.CANCELLED:
        if role is None:
            return Role.ADMIN
        if RideStatus(ride.status) is RideStatus.SEARCHING and role is not Role.PASSENGER:
            raise Forbidden("Only the passenger can cancel a ride that is still searching")
        return role

    if role is not Role.DRIVER:
        raise Forbidden("Only the assigned driver can advance the ride")
    return role
