"""
Recipient resolution for the cash custody chain.

Single place that decides who receives cash at each stage:

    shift_collection     -> station manager
    employee_to_manager  -> station manager
    manager_to_owner     -> station owner
    bank_deposit         -> station owner (records the deposit)
"""

from __future__ import annotations

from ..extensions import db
from ..models import Station, User
from ..models.handovers import (
    SHIFT_COLLECTION,
    EMPLOYEE_TO_MANAGER,
    MANAGER_TO_OWNER,
    BANK_DEPOSIT,
)
from ..validation import ValidationError, NotFoundError


RECIPIENT_ROLE_BY_TYPE = {
    SHIFT_COLLECTION: "manager",
    EMPLOYEE_TO_MANAGER: "manager",
    MANAGER_TO_OWNER: "owner",
    BANK_DEPOSIT: "owner",
}


class RecipientUnavailableError(ValidationError):
    """Station has no user assigned to the receiving role."""


def get_station(station_id: int) -> Station:
    station = db.session.get(Station, station_id)
    if not station:
        raise NotFoundError(f"Station {station_id} not found")
    return station


def resolve_recipient(station_id: int, handover_type: str) -> int:
    role = RECIPIENT_ROLE_BY_TYPE.get(handover_type)
    if role is None:
        raise ValidationError(f"Unknown handover type '{handover_type}'")

    station = get_station(station_id)
    user_id = station.manager_user_id if role == "manager" else station.owner_user_id
    if user_id is None:
        raise RecipientUnavailableError(
            f"Station {station_id} has no {role} assigned to receive {handover_type}"
        )
    return user_id


def require_station_member(station_id: int, user_id: int) -> User:
    """
    Cash can only be handed over by someone working at the station: an
    active user assigned to it, or its manager/owner of record.
    """
    station = get_station(station_id)
    user = db.session.get(User, user_id)
    if not user or not user.is_active or user.org_id != station.org_id:
        raise ValidationError(f"User {user_id} is not a member of station {station_id}")
    if user.station_id != station_id and user_id not in (station.manager_user_id, station.owner_user_id):
        raise ValidationError(f"User {user_id} is not a member of station {station_id}")
    return user
