# splitledger/services/member_service.py
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlmodel import Session, or_, select

from splitledger.models.expense import Expense, ExpenseMember
from splitledger.models.group import Group, Member
from splitledger.models.resource import ConsumptionMember, Resource
from splitledger.models.settlement import SettlementMember
from splitledger.services.snapshot import GroupNotFound, consumption_cost, resolve_shares
from splitledger.services.weights import to_decimal

logger = logging.getLogger(__name__)


class MemberNotFound(LookupError):
    pass


def _in_window(when: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    return (start is None or start <= when) and (end is None or when <= end)


def _refresh_shares(event, total, share_cls, members, weights_enabled, drop_member_id=None):
    stored = [s for s in event.shares if s.member_id != drop_member_id]
    shares = resolve_shares(
        total, stored, members, event.date, event.split_all,
        event.sharing_method, weights_enabled,
    )
    event.shares = [
        share_cls(member_id=s.member_id, amount=s.amount, weight=s.weight,
                  is_manually_edited=s.is_manually_edited)
        for s in shares
    ]


def _events(session: Session, group: Group):
    """(event, total, share class) for every expense and consumption of the group."""
    for e in session.exec(select(Expense).where(Expense.group_id == group.id)).all():
        yield e, to_decimal(e.amount), ExpenseMember
    for r in session.exec(select(Resource).where(Resource.group_id == group.id)).all():
        for c in r.consumptions:
            yield c, consumption_cost(c, r), ConsumptionMember


def recalculate_group_shares(
    session: Session,
    group: Group,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    member_id: Optional[int] = None,
) -> int:
    """
    Re-split stored expenses and consumptions after a membership change.

    Split-all events dated inside [start, end] are recomputed for the members
    active on their date; with member_id, events naming that member are
    recomputed too, and the member is taken off explicit-member events dated
    outside their active period. Pins are kept. Nothing is committed here.
    """
    members = session.exec(select(Member).where(Member.group_id == group.id).order_by(Member.id)).all()
    member = next((m for m in members if m.id == member_id), None)
    touched = 0

    for event, total, share_cls in _events(session, group):
        named = member is not None and any(s.member_id == member.id for s in event.shares)
        # recurring occurrences are re-split on read
        recurring = getattr(event, "is_recurring", False)
        if not named and not (event.split_all and not recurring and _in_window(event.date, start, end)):
            continue
        drop = None
        if named and not event.split_all and not member.is_active_on(event.date):
            drop = member.id
        _refresh_shares(event, total, share_cls, members, group.weights_enabled, drop)
        session.add(event)
        touched += 1

    logger.debug("group %s: re-split %d events", group.id, touched)
    return touched


def add_member(
    session: Session,
    group_id: int,
    name: str,
    email: Optional[str] = None,
    weights: Optional[Dict[str, float]] = None,
    active_from: Optional[datetime] = None,
    active_to: Optional[datetime] = None,
) -> Member:
    group = session.get(Group, group_id)
    if not group:
        raise GroupNotFound(f"group {group_id} not found")
    member = Member(
        group_id=group_id, name=name, email=email, weights=dict(weights or {}),
        active_from=active_from or datetime.utcnow(), active_to=active_to,
    )
    session.add(member)
    session.flush()
    recalculate_group_shares(session, group, member.active_from, member.active_to)
    session.commit()
    session.refresh(member)
    logger.info("group %s: member %s added", group_id, member.id)
    return member


_UNSET = object()


def update_member(
    session: Session,
    member_id: int,
    name: Optional[str] = None,
    email=_UNSET,
    weights: Optional[Dict[str, float]] = None,
    active_from: Optional[datetime] = None,
    active_to=_UNSET,
) -> Member:
    member = session.get(Member, member_id)
    if not member:
        raise MemberNotFound(f"member {member_id} not found")
    group = session.get(Group, member.group_id)

    old_from, old_to = member.active_from, member.active_to
    weights_changed = weights is not None and dict(weights) != dict(member.weights or {})

    if name is not None:
        member.name = name
    if email is not _UNSET:
        member.email = email
    if weights is not None:
        member.weights = dict(weights)
    if active_from is not None:
        member.active_from = active_from
    if active_to is not _UNSET:
        member.active_to = active_to

    period_changed = (old_from, old_to) != (member.active_from, member.active_to)
    session.add(member)
    session.flush()

    if period_changed or (weights_changed and group.weights_enabled):
        starts = [d for d in (old_from, member.active_from) if d is not None]
        start = min(starts) if len(starts) == 2 else None
        end = None if old_to is None or member.active_to is None else max(old_to, member.active_to)
        recalculate_group_shares(session, group, start, end, member_id=member.id)

    session.commit()
    session.refresh(member)
    return member


def remove_member(session: Session, member_id: int) -> bool:
    """
    Delete a member and re-split the events they shared.

    Refused while the member paid an expense, appears in a settlement, or is
    the only participant of an event.
    """
    member = session.get(Member, member_id)
    if not member:
        return False
    group = session.get(Group, member.group_id)

    paid = session.exec(select(Expense).where(Expense.paid_by_id == member_id)).first()
    if paid:
        raise ValueError(f"member {member_id} paid expense {paid.id}")
    settled = session.exec(select(SettlementMember).where(or_(
        SettlementMember.from_member_id == member_id,
        SettlementMember.to_member_id == member_id,
    ))).first()
    if settled:
        raise ValueError(f"member {member_id} is part of settlement {settled.settlement_id}")

    affected = []
    for event, total, share_cls in _events(session, group):
        if not any(s.member_id == member_id for s in event.shares):
            continue
        if all(s.member_id == member_id for s in event.shares):
            raise ValueError(f"member {member_id} is the only participant of {type(event).__name__.lower()} {event.id}")
        affected.append((event, total, share_cls))

    members = session.exec(
        select(Member).where(Member.group_id == group.id, Member.id != member_id).order_by(Member.id)
    ).all()
    for event, total, share_cls in affected:
        _refresh_shares(event, total, share_cls, members, group.weights_enabled, drop_member_id=member_id)
        session.add(event)
    session.flush()
    session.delete(member)
    session.commit()
    logger.info("group %s: member %s removed, %d events re-split", group.id, member_id, len(affected))
    return True
