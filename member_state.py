"""Member status state machine: ``active`` <-> ``suspended``.

A member is suspended once they hold ``SUSPENSION_OVERDUE_THRESHOLD``
overdue loans, and reactivated when they are back under the threshold with
no unpaid fines left.
"""

import logging
from typing import Optional

from config import SUSPENSION_OVERDUE_THRESHOLD
from errors import InvalidStateTransitionError, NotFoundError
from models import Member, MemberStatus, TransactionStatus
from store import Session
from validation import count_unpaid_fines

logger = logging.getLogger(__name__)


def _get_member(session: Session, member_id: int) -> Member:
    member = session.members.find_by_id(member_id)
    if member is None:
        raise NotFoundError("Member", member_id)
    return member


def count_overdue_loans(session: Session, member_id: int) -> int:
    return session.transactions.count(member_id=member_id, status=TransactionStatus.OVERDUE)


def suspend_member(session: Session, member_id: int) -> Member:
    member = _get_member(session, member_id)
    if member.status == MemberStatus.SUSPENDED:
        raise InvalidStateTransitionError("Member is already suspended")
    logger.info("Suspending member %s", member_id)
    return session.members.update(member_id, {"status": MemberStatus.SUSPENDED})


def activate_member(session: Session, member_id: int) -> Member:
    member = _get_member(session, member_id)
    if member.status == MemberStatus.ACTIVE:
        raise InvalidStateTransitionError("Member is already active")
    logger.info("Activating member %s", member_id)
    return session.members.update(member_id, {"status": MemberStatus.ACTIVE})


def evaluate_member_status(session: Session, member_id: int) -> Optional[Member]:
    """Apply the suspension rule; returns the member as it stands afterwards."""
    member = session.members.find_by_id(member_id)
    if member is None:
        return None

    overdue = count_overdue_loans(session, member_id)
    if overdue >= SUSPENSION_OVERDUE_THRESHOLD and member.status == MemberStatus.ACTIVE:
        return suspend_member(session, member_id)
    if (
        overdue < SUSPENSION_OVERDUE_THRESHOLD
        and member.status == MemberStatus.SUSPENDED
        and count_unpaid_fines(session, member_id) == 0
    ):
        return activate_member(session, member_id)
    return member
