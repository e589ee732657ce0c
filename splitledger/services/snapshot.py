# splitledger/services/snapshot.py
"""
A consistent, in-memory view of one group's history.

Every expense occurrence and every consumption is turned into an instance
carrying its final resolved shares, so the balance code never has to look
at how the shares were stored or whether the expense recurs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from sqlmodel import Session, select

from splitledger.models.expense import Expense
from splitledger.models.group import Group, Member
from splitledger.models.resource import Consumption, Resource
from splitledger.models.settlement import Settlement
from splitledger.services.redistribution import Share, redistribute
from splitledger.services.weights import to_decimal

logger = logging.getLogger(__name__)

# (expense, current_date) -> occurrence dates up to current_date
RecurrenceExpander = Callable[[Expense, datetime], Iterable[datetime]]


class GroupNotFound(LookupError):
    pass


@dataclass(frozen=True)
class ExpenseInstance:
    expense_id: int
    paid_by_id: int
    amount: Decimal
    date: datetime
    shares: Tuple[Share, ...]


@dataclass(frozen=True)
class StoredExpense(ExpenseInstance):
    """The expense row itself."""


@dataclass(frozen=True)
class GeneratedExpense(ExpenseInstance):
    """One occurrence of a recurring expense."""


EventInstance = Union[StoredExpense, GeneratedExpense]


@dataclass(frozen=True)
class ConsumptionInstance:
    consumption_id: int
    resource_id: int
    cost: Decimal
    date: datetime
    shares: Tuple[Share, ...]


@dataclass
class GroupSnapshot:
    group: Group
    members: List[Member] = field(default_factory=list)
    resources: List[Resource] = field(default_factory=list)
    expenses: List[EventInstance] = field(default_factory=list)
    consumptions: List[ConsumptionInstance] = field(default_factory=list)
    settlements: List[Settlement] = field(default_factory=list)


def active_members_for_date(members: Iterable[Member], when: datetime) -> List[Member]:
    return sorted((m for m in members if m.is_active_on(when)), key=lambda m: m.id)


def consumption_cost(consumption: Consumption, resource: Resource) -> Decimal:
    amount = to_decimal(consumption.amount)
    if consumption.is_unit_amount and resource.unit_price is not None:
        return amount * to_decimal(resource.unit_price)
    return amount


def stored_share(row) -> Share:
    return Share(
        member_id=row.member_id,
        amount=to_decimal(row.amount if row.amount is not None else 0),
        weight=None if row.weight is None else to_decimal(row.weight),
        is_manually_edited=row.is_manually_edited,
    )


def resolve_shares(
    total,
    stored_shares: Iterable,
    members: Sequence[Member],
    when: datetime,
    split_all: bool,
    sharing_method: str,
    weights_enabled: bool,
) -> Tuple[Share, ...]:
    """
    Final shares of one event occurrence.

    Split-all events go to whoever is active on the date; the others to the
    members stored on the event. Pins stored on the event are kept. When
    nobody is left to carry a non-zero total, the whole group splits it so
    the payer's credit is always matched.
    """
    stored = sorted(stored_shares, key=lambda s: s.member_id)
    if split_all:
        participants = active_members_for_date(members, when)
    else:
        by_id = {m.id: m for m in members}
        participants = [by_id[s.member_id] for s in stored if s.member_id in by_id]
    if not participants and to_decimal(total) != 0:
        logger.warning("no participants on %s, splitting %s over all %d members", when, total, len(members))
        participants = sorted(members, key=lambda m: m.id)
    prior = [stored_share(s) for s in stored]
    return tuple(redistribute(total, participants, prior, sharing_method, weights_enabled))


def expand_expense(
    expense: Expense,
    members: Sequence[Member],
    weights_enabled: bool,
    expander: Optional[RecurrenceExpander] = None,
    current_date: Optional[datetime] = None,
) -> List[EventInstance]:
    amount = to_decimal(expense.amount)

    def _shares(when):
        return resolve_shares(
            amount, expense.shares, members, when,
            expense.split_all, expense.sharing_method, weights_enabled,
        )

    if not expense.is_recurring or expander is None:
        return [StoredExpense(expense.id, expense.paid_by_id, amount, expense.date, _shares(expense.date))]
    dates = list(expander(expense, current_date or datetime.utcnow()))
    logger.debug("expense %s expands to %d occurrences", expense.id, len(dates))
    return [GeneratedExpense(expense.id, expense.paid_by_id, amount, d, _shares(d)) for d in dates]


def build_snapshot(
    group: Group,
    members: Iterable[Member],
    resources: Iterable[Resource],
    expenses: Iterable[Expense],
    settlements: Iterable[Settlement],
    expander: Optional[RecurrenceExpander] = None,
    current_date: Optional[datetime] = None,
) -> GroupSnapshot:
    members = sorted(members, key=lambda m: m.id)
    resources = sorted(resources, key=lambda r: r.id)

    instances = []
    for e in sorted(expenses, key=lambda e: (e.date, e.id or 0)):
        instances.extend(expand_expense(e, members, group.weights_enabled, expander, current_date))

    consumptions = []
    for r in resources:
        for c in sorted(r.consumptions, key=lambda c: (c.date, c.id or 0)):
            cost = consumption_cost(c, r)
            shares = resolve_shares(
                cost, c.shares, members, c.date, c.split_all, c.sharing_method, group.weights_enabled
            )
            consumptions.append(ConsumptionInstance(c.id, r.id, cost, c.date, shares))

    return GroupSnapshot(
        group=group,
        members=members,
        resources=resources,
        expenses=instances,
        consumptions=consumptions,
        settlements=sorted(settlements, key=lambda s: (s.created_at, s.id or 0)),
    )


def load_group_snapshot(
    session: Session,
    group_id: int,
    expander: Optional[RecurrenceExpander] = None,
    current_date: Optional[datetime] = None,
) -> GroupSnapshot:
    group = session.get(Group, group_id)
    if not group:
        raise GroupNotFound(f"group {group_id} not found")
    members = session.exec(select(Member).where(Member.group_id == group_id)).all()
    resources = session.exec(select(Resource).where(Resource.group_id == group_id)).all()
    expenses = session.exec(select(Expense).where(Expense.group_id == group_id)).all()
    settlements = session.exec(select(Settlement).where(Settlement.group_id == group_id)).all()
    return build_snapshot(group, members, resources, expenses, settlements, expander, current_date)
