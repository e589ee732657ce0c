# splitledger/services/settlement_service.py
import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

from sqlmodel import Session

from splitledger.models.settlement import COMPLETED, STATUSES, Settlement, SettlementMember
from splitledger.services.balance_service import (
    MEMBER,
    RESOURCE,
    EntityKey,
    compute_group_balances,
)
from splitledger.services.cutoff import settlement_status

logger = logging.getLogger(__name__)

# balances this close to zero count as settled
DEADBAND = Decimal("0.01")


class SettlementStrategy(str, Enum):
    OPTIMIZED = "optimized"
    AROUND_MEMBER = "around_member"
    AROUND_RESOURCE = "around_resource"


class SettlementPlanError(ValueError):
    pass


class NoSettlementNeeded(Exception):
    pass


class SettlementMemberNotFound(LookupError):
    pass


class Transaction(NamedTuple):
    from_kind: str
    from_id: int
    to_kind: str
    to_id: int
    amount: Decimal


def _transaction(src: EntityKey, dst: EntityKey, amount: Decimal) -> Transaction:
    return Transaction(src.kind, src.id, dst.kind, dst.id, amount)


def _split(balances: Dict[EntityKey, Decimal]):
    creditors = [[k, v] for k, v in sorted(balances.items()) if v > DEADBAND]
    debtors = [[k, -v] for k, v in sorted(balances.items()) if v < -DEADBAND]
    return creditors, debtors


def _optimized(creditors, debtors) -> List[Transaction]:
    # largest first; sort is stable so equal amounts stay in key order
    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)
    transactions = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        debtor, creditor = debtors[i], creditors[j]
        amount = min(debtor[1], creditor[1])
        if amount >= DEADBAND:
            transactions.append(_transaction(debtor[0], creditor[0], amount))
        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] < DEADBAND:
            i += 1
        if creditor[1] < DEADBAND:
            j += 1
    return transactions


def _around(center: EntityKey, center_balance: Decimal, creditors, debtors) -> List[Transaction]:
    if center_balance > 0:
        return [_transaction(k, center, amount) for k, amount in debtors if k != center]
    if center_balance < 0:
        return [_transaction(center, k, amount) for k, amount in creditors if k != center]
    return []


def plan(
    balances: Dict[EntityKey, Decimal],
    strategy,
    center_id: Optional[int] = None,
) -> List[Transaction]:
    """
    Payments that settle the given balances.

    optimized: greedy, largest debtor pays largest creditor until one side
    runs out. around_member / around_resource: every payment goes to or from
    the centre entity; nothing is planned while the centre itself is at zero.
    """
    try:
        strategy = SettlementStrategy(strategy)
    except ValueError:
        raise SettlementPlanError(f"unknown settlement strategy: {strategy!r}")

    creditors, debtors = _split(balances)
    if strategy is SettlementStrategy.OPTIMIZED:
        transactions = _optimized(creditors, debtors)
    else:
        if center_id is None:
            raise SettlementPlanError(f"{strategy.value} settlement needs a center_id")
        kind = MEMBER if strategy is SettlementStrategy.AROUND_MEMBER else RESOURCE
        center = EntityKey(kind, center_id)
        if center not in balances:
            raise SettlementPlanError(f"{center} has no balance in this group")
        transactions = _around(center, balances[center], creditors, debtors)

    logger.debug("%s plan: %d transactions", strategy.value, len(transactions))
    return transactions


def create_settlement(
    session: Session,
    group_id: int,
    strategy,
    center_id: Optional[int] = None,
    title: str = "",
    description: Optional[str] = "",
) -> Settlement:
    """Plan against the current balances and store the plan as an open settlement."""
    balances = compute_group_balances(session, group_id)
    transactions = plan(balances, strategy, center_id)
    if not transactions:
        raise NoSettlementNeeded("No settlements needed - all balances are zero")

    now = datetime.utcnow()
    settlement = Settlement(group_id=group_id, title=title, description=description, created_at=now)
    for t in transactions:
        settlement.members.append(SettlementMember(
            from_member_id=t.from_id if t.from_kind == MEMBER else None,
            from_resource_id=t.from_id if t.from_kind == RESOURCE else None,
            to_member_id=t.to_id if t.to_kind == MEMBER else None,
            to_resource_id=t.to_id if t.to_kind == RESOURCE else None,
            amount=t.amount,
            created_at=now,
        ))
    settlement.status = settlement_status(settlement.members)
    session.add(settlement)
    session.commit()
    session.refresh(settlement)
    logger.info("group %s: settlement %s created with %d transactions", group_id, settlement.id, len(transactions))
    return settlement


def update_settlement_member_status(session: Session, settlement_member_id: int, status: str) -> SettlementMember:
    if status not in STATUSES:
        raise ValueError(f"unknown settlement status: {status!r}")
    sm = session.get(SettlementMember, settlement_member_id)
    if not sm:
        raise SettlementMemberNotFound(f"settlement member {settlement_member_id} not found")
    sm.status = status
    settlement = sm.settlement
    settlement.status = settlement_status(settlement.members)
    session.add(sm)
    session.add(settlement)
    session.commit()
    session.refresh(sm)
    if settlement.status == COMPLETED:
        logger.info("settlement %s completed", settlement.id)
    return sm


def remove_settlement(session: Session, settlement_id: int) -> bool:
    """Delete a settlement and its transactions; the cutoff falls back to the previous one."""
    settlement = session.get(Settlement, settlement_id)
    if not settlement:
        return False
    group_id = settlement.group_id
    session.delete(settlement)
    session.commit()
    logger.info("group %s: settlement %s removed", group_id, settlement_id)
    return True
