# splitledger/services/balance_service.py
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, NamedTuple, Optional, Tuple

from sqlmodel import Session

from splitledger.models.settlement import COMPLETED, SettlementMember
from splitledger.services.cutoff import resolve_cutoff
from splitledger.services.snapshot import GroupSnapshot, RecurrenceExpander, load_group_snapshot
from splitledger.services.weights import to_decimal

logger = logging.getLogger(__name__)

MEMBER = "member"
RESOURCE = "resource"
ZERO = Decimal("0")


class EntityKey(NamedTuple):
    kind: str
    id: int

    def __str__(self) -> str:
        return f"{self.kind}_{self.id}"

    @classmethod
    def parse(cls, text: str) -> "EntityKey":
        kind, _, raw_id = text.partition("_")
        if kind not in (MEMBER, RESOURCE) or not raw_id.isdigit():
            raise ValueError(f"not an entity key: {text!r}")
        return cls(kind, int(raw_id))


def member_key(member_id: int) -> EntityKey:
    return EntityKey(MEMBER, member_id)


def resource_key(resource_id: int) -> EntityKey:
    return EntityKey(RESOURCE, resource_id)


def settlement_endpoints(sm: SettlementMember) -> Tuple[Optional[EntityKey], Optional[EntityKey]]:
    src = member_key(sm.from_member_id) if sm.from_member_id is not None else (
        resource_key(sm.from_resource_id) if sm.from_resource_id is not None else None
    )
    dst = member_key(sm.to_member_id) if sm.to_member_id is not None else (
        resource_key(sm.to_resource_id) if sm.to_resource_id is not None else None
    )
    return src, dst


def aggregate(snapshot: GroupSnapshot, cutoff: Optional[datetime]) -> Dict[EntityKey, Decimal]:
    """
    Net balance per member and resource; positive means owed money.

    Expenses and consumptions count from the cutoff date on, completed
    settlement transactions only when created after it.
    """
    balances: Dict[EntityKey, Decimal] = {member_key(m.id): ZERO for m in snapshot.members}
    for r in snapshot.resources:
        balances[resource_key(r.id)] = ZERO

    def _add(key, amount):
        balances[key] = balances.get(key, ZERO) + amount

    for e in snapshot.expenses:
        if cutoff is not None and e.date < cutoff:
            continue
        _add(member_key(e.paid_by_id), e.amount)
        for share in e.shares:
            _add(member_key(share.member_id), -share.amount)

    for c in snapshot.consumptions:
        if cutoff is not None and c.date < cutoff:
            continue
        _add(resource_key(c.resource_id), c.cost)
        for share in c.shares:
            _add(member_key(share.member_id), -share.amount)

    for s in snapshot.settlements:
        for sm in sorted(s.members, key=lambda m: m.id or 0):
            if sm.status != COMPLETED:
                continue
            if cutoff is not None and sm.created_at <= cutoff:
                continue
            amount = to_decimal(sm.amount)
            src, dst = settlement_endpoints(sm)
            # paying reduces the payer's debt and the receiver's claim
            if src is not None:
                _add(src, amount)
            if dst is not None:
                _add(dst, -amount)

    return dict(sorted(balances.items()))


def balances_by_key(balances: Dict[EntityKey, Decimal]) -> Dict[str, Decimal]:
    return {str(k): v for k, v in balances.items()}


def compute_group_balances(
    session: Session,
    group_id: int,
    expander: Optional[RecurrenceExpander] = None,
    current_date: Optional[datetime] = None,
) -> Dict[EntityKey, Decimal]:
    snapshot = load_group_snapshot(session, group_id, expander, current_date)
    cutoff = resolve_cutoff(snapshot.settlements)
    logger.debug("group %s: cutoff=%s, %d expense instances", group_id, cutoff, len(snapshot.expenses))
    return aggregate(snapshot, cutoff)
