"""
Negotiation Engine -- price proposals from the driver, answered by the
passenger, while the ride is ``accepted`` or ``started``.

Proposals are rows in ``negotiation_proposals``, numbered per ride and never
deleted.  At most one is pending at a time; both ``propose`` and ``respond``
run under the ride's row lock so that two concurrent answers cannot resolve
the same proposal twice.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from ridehail.config import Settings
from ridehail.domain.entities import Actor
from ridehail.domain.enums import NEGOTIABLE_STATUSES, ProposalStatus, RideStatus, Role
from ridehail.domain.errors import (
    Forbidden,
    InvalidPrice,
    InvalidRideState,
    NoPendingProposal,
    NotFound,
    ProposalAlreadyPending,
)
from ridehail.domain.lifecycle import ensure_not_terminal, participant_role
from ridehail.domain.pricing import check_amount, to_money
from ridehail.infrastructure.locks import row_key
from ridehail.infrastructure.models import NegotiationProposalModel, utcnow
from ridehail.infrastructure.notifications import (
    NotificationGateway,
    proposal_payload,
    ride_topic,
    user_topic,
)
from ridehail.infrastructure.uow import Storage

logger = logging.getLogger(__name__)


class NegotiationEngine:
    def __init__(self, storage: Storage, notifier: NotificationGateway, settings: Settings):
        self.storage = storage
        self.notifier = notifier
        self.settings = settings

    async def propose(
        self, actor: Actor, ride_id: int, price: Decimal, reason: str
    ) -> NegotiationProposalModel:
        price = check_amount(price, "Proposed price")
        minimum = to_money(self.settings.minimum_proposal_price)
        if price < minimum:
            raise InvalidPrice(f"Minimum price is {minimum}", minimum=str(minimum))

        async with self.storage.unit_of_work("propose") as uow:
            await uow.lock(row_key("rides", ride_id))
            ride = await uow.rides.get_for_update(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found")
            if participant_role(ride, actor) is not Role.DRIVER:
                raise Forbidden("Only the assigned driver can propose a new price")
            if RideStatus(ride.status) not in NEGOTIABLE_STATUSES:
                raise InvalidRideState(
                    f"Cannot negotiate a ride that is {RideStatus(ride.status).value}"
                )
            if await uow.proposals.get_latest_pending(ride_id) is not None:
                raise ProposalAlreadyPending(
                    "A proposal is already waiting for the passenger's answer"
                )

            proposal = await uow.proposals.append(
                NegotiationProposalModel(
                    ride_id=ride_id,
                    sequence=await uow.proposals.next_sequence(ride_id),
                    proposed_by=Role.DRIVER,
                    proposer_id=actor.id,
                    previous_price=ride.committed_price or ride.requested_price,
                    proposed_price=price,
                    reason=reason,
                    status=ProposalStatus.PENDING,
                )
            )
            passenger_id = ride.passenger_id

        logger.info(
            "Driver %d proposed %s on ride %d (#%d)",
            actor.id, price, ride_id, proposal.sequence,
        )
        await self.notifier.publish(
            user_topic(passenger_id), "price_proposal", proposal_payload(proposal)
        )
        return proposal

    async def respond(
        self, actor: Actor, ride_id: int, accept: bool, reason: Optional[str] = None
    ) -> NegotiationProposalModel:
        async with self.storage.unit_of_work("respond") as uow:
            await uow.lock(row_key("rides", ride_id))
            ride = await uow.rides.get_for_update(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found")
            if participant_role(ride, actor) is not Role.PASSENGER:
                raise Forbidden("Only the passenger can answer a price proposal")
            ensure_not_terminal(ride)

            proposal = await uow.proposals.get_latest_pending(ride_id)
            if proposal is None:
                raise NoPendingProposal("There is no pending proposal to answer")

            proposal.status = ProposalStatus.ACCEPTED if accept else ProposalStatus.REJECTED
            proposal.response_reason = reason
            proposal.responded_at = utcnow()
            if accept:
                ride.committed_price = proposal.proposed_price
            await uow.session.flush()
            driver_id = ride.driver_id

        logger.info(
            "Passenger %d %s proposal #%d on ride %d",
            actor.id, proposal.status.value, proposal.sequence, ride_id,
        )
        payload = proposal_payload(proposal)
        await self.notifier.publish(user_topic(driver_id), "price_proposal_response", payload)
        await self.notifier.publish(ride_topic(ride_id), "price_proposal_response", payload)
        return proposal

    async def history(self, actor: Actor, ride_id: int) -> list[NegotiationProposalModel]:
        async with self.storage.unit_of_work("negotiation_history") as uow:
            ride = await uow.rides.get_by_id(ride_id)
            if ride is None:
                raise NotFound(f"Ride {ride_id} not found")
            if participant_role(ride, actor) is None and not actor.is_admin:
                raise Forbidden("You are not a participant of this ride")
            return await uow.proposals.list_for_ride(ride_id)
