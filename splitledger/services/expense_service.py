# splitledger/services/expense_service.py
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlmodel import Session, or_, select

from splitledger.models.expense import RECURRING_TYPES, Expense, ExpenseMember
from splitledger.models.group import Group, Member
from splitledger.models.resource import Consumption, ConsumptionMember, Resource
from splitledger.models.settlement import SettlementMember
from splitledger.services.redistribution import Share, redistribute
from splitledger.services.snapshot import (
    GroupNotFound,
    active_members_for_date,
    consumption_cost,
    resolve_shares,
    stored_share,
)
from splitledger.services.weights import default_sharing_method, to_decimal

logger = logging.getLogger(__name__)

EXPENSE_FIELDS = (
    "title", "description", "amount", "paid_by_id", "date", "split_all",
    "sharing_method", "is_recurring", "recurring_type", "recurring_start_date",
)
CONSUMPTION_FIELDS = ("description", "amount", "is_unit_amount", "date", "split_all", "sharing_method")
RESOURCE_FIELDS = ("name", "description", "unit", "unit_price")


class ExpenseNotFound(LookupError):
    pass


class ResourceNotFound(LookupError):
    pass


class ConsumptionNotFound(LookupError):
    pass


def _requested_shares(member_amounts: Optional[Iterable[dict]]) -> List[Share]:
    # entries with an amount were typed in by the user and stay pinned
    shares = []
    for ma in member_amounts or []:
        amount = ma.get("amount")
        weight = ma.get("weight")
        shares.append(Share(
            member_id=int(ma["member_id"]),
            amount=to_decimal(amount) if amount is not None else to_decimal(0),
            weight=to_decimal(weight) if weight is not None else None,
            is_manually_edited=amount is not None,
        ))
    return shares


def _merge_shares(stored: Iterable, requested: Sequence[Share]) -> List[Share]:
    """Stored shares overridden member by member by the requested ones."""
    overrides = {s.member_id: s for s in requested}
    merged = [overrides.pop(row.member_id, None) or stored_share(row) for row in stored]
    return merged + list(overrides.values())


def _participants(members: Sequence[Member], when: datetime, split_all: bool, member_ids) -> List[Member]:
    if split_all:
        active = active_members_for_date(members, when)
        if not active:
            raise ValueError("Please select at least one member")
        return active
    if not member_ids:
        raise ValueError("Please select at least one member")
    by_id = {m.id: m for m in members}
    unknown = [mid for mid in member_ids if mid not in by_id]
    if unknown:
        raise ValueError(f"members not in group: {unknown}")
    return [by_id[mid] for mid in sorted(set(member_ids))]


def _group_members(session: Session, group_id: int) -> List[Member]:
    return session.exec(select(Member).where(Member.group_id == group_id).order_by(Member.id)).all()


def _check_amount(amount) -> None:
    if to_decimal(amount) <= 0:
        raise ValueError("Amount must be greater than 0")


def _check_expense(expense: Expense, members: Sequence[Member]) -> None:
    _check_amount(expense.amount)
    if expense.is_recurring and (
        not expense.recurring_start_date or expense.recurring_type not in RECURRING_TYPES
    ):
        raise ValueError("Recurring expenses need a start date and a weekly, monthly or yearly type")
    if expense.paid_by_id not in {m.id for m in members}:
        raise ValueError(f"member {expense.paid_by_id} is not in group {expense.group_id}")


def _store_shares(event, shares: Iterable[Share], share_cls) -> None:
    event.shares = [
        share_cls(member_id=s.member_id, amount=s.amount, weight=s.weight,
                  is_manually_edited=s.is_manually_edited)
        for s in shares
    ]


def create_expense(
    session: Session,
    group_id: int,
    paid_by_id: int,
    amount,
    title: str = "",
    description: Optional[str] = "",
    date: Optional[datetime] = None,
    split_all: bool = False,
    member_ids: Optional[Sequence[int]] = None,
    sharing_method: Optional[str] = None,
    member_amounts: Optional[Iterable[dict]] = None,
    is_recurring: bool = False,
    recurring_type: Optional[str] = None,
    recurring_start_date: Optional[datetime] = None,
) -> Expense:
    group = session.get(Group, group_id)
    if not group:
        raise GroupNotFound(f"group {group_id} not found")
    expense = Expense(
        group_id=group_id, paid_by_id=paid_by_id, title=title, description=description,
        amount=to_decimal(amount), date=date or datetime.utcnow(), split_all=split_all,
        sharing_method=sharing_method or default_sharing_method(group),
        is_recurring=is_recurring, recurring_type=recurring_type,
        recurring_start_date=recurring_start_date,
    )
    members = _group_members(session, group_id)
    _check_expense(expense, members)

    participants = _participants(members, expense.date, split_all, member_ids)
    shares = redistribute(
        expense.amount, participants, _requested_shares(member_amounts),
        expense.sharing_method, group.weights_enabled,
    )
    _store_shares(expense, shares, ExpenseMember)
    session.add(expense)
    session.commit()
    session.refresh(expense)
    logger.info("group %s: expense %s of %s split over %d members", group_id, expense.id, expense.amount, len(shares))
    return expense


def update_expense(
    session: Session,
    expense_id: int,
    member_ids: Optional[Sequence[int]] = None,
    member_amounts: Optional[Iterable[dict]] = None,
    **changes,
) -> Expense:
    """
    Edit an expense and re-split it.

    Pins already stored on the expense are kept unless member_amounts names
    the member again; an entry without an amount hands it back to automatic
    splitting. member_ids replaces the participants of an explicit-member
    expense, otherwise the stored ones are kept.
    """
    expense = session.get(Expense, expense_id)
    if not expense:
        raise ExpenseNotFound(f"expense {expense_id} not found")
    unknown = set(changes) - set(EXPENSE_FIELDS)
    if unknown:
        raise TypeError(f"unknown expense fields: {sorted(unknown)}")
    group = session.get(Group, expense.group_id)
    stored = list(expense.shares)

    for field_name, value in changes.items():
        setattr(expense, field_name, value)
    expense.amount = to_decimal(expense.amount)
    expense.sharing_method = expense.sharing_method or default_sharing_method(group)
    members = _group_members(session, group.id)
    _check_expense(expense, members)

    if member_ids is None:
        member_ids = [row.member_id for row in stored]
    participants = _participants(members, expense.date, expense.split_all, member_ids)
    shares = redistribute(
        expense.amount, participants, _merge_shares(stored, _requested_shares(member_amounts)),
        expense.sharing_method, group.weights_enabled,
    )
    _store_shares(expense, shares, ExpenseMember)
    session.add(expense)
    session.commit()
    session.refresh(expense)
    logger.info("group %s: expense %s updated", group.id, expense.id)
    return expense


def delete_expense(session: Session, expense_id: int) -> bool:
    expense = session.get(Expense, expense_id)
    if not expense:
        return False
    session.delete(expense)
    session.commit()
    return True


def create_consumption(
    session: Session,
    resource_id: int,
    amount,
    is_unit_amount: bool = False,
    description: Optional[str] = "",
    date: Optional[datetime] = None,
    split_all: bool = False,
    member_ids: Optional[Sequence[int]] = None,
    sharing_method: Optional[str] = None,
    member_amounts: Optional[Iterable[dict]] = None,
) -> Consumption:
    resource = session.get(Resource, resource_id)
    if not resource:
        raise ResourceNotFound(f"resource {resource_id} not found")
    group = session.get(Group, resource.group_id)
    _check_amount(amount)
    if is_unit_amount and resource.unit_price is None:
        raise ValueError(f"resource {resource_id} has no unit price")

    date = date or datetime.utcnow()
    sharing_method = sharing_method or default_sharing_method(group)
    consumption = Consumption(
        resource_id=resource_id, description=description, amount=to_decimal(amount),
        is_unit_amount=is_unit_amount, date=date, split_all=split_all,
        sharing_method=sharing_method,
    )
    cost = consumption_cost(consumption, resource)
    participants = _participants(_group_members(session, group.id), date, split_all, member_ids)
    shares = redistribute(
        cost, participants, _requested_shares(member_amounts), sharing_method, group.weights_enabled
    )
    _store_shares(consumption, shares, ConsumptionMember)
    session.add(consumption)
    session.commit()
    session.refresh(consumption)
    logger.info("resource %s: consumption %s costing %s", resource_id, consumption.id, cost)
    return consumption


def update_consumption(
    session: Session,
    consumption_id: int,
    member_ids: Optional[Sequence[int]] = None,
    member_amounts: Optional[Iterable[dict]] = None,
    **changes,
) -> Consumption:
    """Edit a consumption and re-split its cost; stored pins are kept as in update_expense()."""
    consumption = session.get(Consumption, consumption_id)
    if not consumption:
        raise ConsumptionNotFound(f"consumption {consumption_id} not found")
    unknown = set(changes) - set(CONSUMPTION_FIELDS)
    if unknown:
        raise TypeError(f"unknown consumption fields: {sorted(unknown)}")
    resource = consumption.resource
    group = session.get(Group, resource.group_id)
    stored = list(consumption.shares)

    for field_name, value in changes.items():
        setattr(consumption, field_name, value)
    _check_amount(consumption.amount)
    consumption.amount = to_decimal(consumption.amount)
    if consumption.is_unit_amount and resource.unit_price is None:
        raise ValueError(f"resource {resource.id} has no unit price")
    consumption.sharing_method = consumption.sharing_method or default_sharing_method(group)

    if member_ids is None:
        member_ids = [row.member_id for row in stored]
    cost = consumption_cost(consumption, resource)
    participants = _participants(
        _group_members(session, group.id), consumption.date, consumption.split_all, member_ids
    )
    shares = redistribute(
        cost, participants, _merge_shares(stored, _requested_shares(member_amounts)),
        consumption.sharing_method, group.weights_enabled,
    )
    _store_shares(consumption, shares, ConsumptionMember)
    session.add(consumption)
    session.commit()
    session.refresh(consumption)
    logger.info("resource %s: consumption %s updated, cost %s", resource.id, consumption.id, cost)
    return consumption


def remove_consumption(session: Session, consumption_id: int) -> bool:
    consumption = session.get(Consumption, consumption_id)
    if not consumption:
        return False
    session.delete(consumption)
    session.commit()
    return True


def create_resource(
    session: Session,
    group_id: int,
    name: str,
    description: Optional[str] = "",
    unit: Optional[str] = None,
    unit_price=None,
) -> Resource:
    if not session.get(Group, group_id):
        raise GroupNotFound(f"group {group_id} not found")
    if unit and unit_price is None:
        raise ValueError("Unit and unit price are required when using units")
    resource = Resource(
        group_id=group_id, name=name, description=description, unit=unit,
        unit_price=None if unit_price is None else to_decimal(unit_price),
    )
    session.add(resource)
    session.commit()
    session.refresh(resource)
    return resource


def update_resource(session: Session, resource_id: int, **changes) -> Resource:
    """Edit a resource; a new unit price re-splits its unit-priced consumptions."""
    resource = session.get(Resource, resource_id)
    if not resource:
        raise ResourceNotFound(f"resource {resource_id} not found")
    unknown = set(changes) - set(RESOURCE_FIELDS)
    if unknown:
        raise TypeError(f"unknown resource fields: {sorted(unknown)}")
    old_price = resource.unit_price

    for field_name, value in changes.items():
        setattr(resource, field_name, value)
    if resource.unit_price is not None:
        resource.unit_price = to_decimal(resource.unit_price)
    if resource.unit and resource.unit_price is None:
        raise ValueError("Unit and unit price are required when using units")

    unit_priced = [c for c in resource.consumptions if c.is_unit_amount]
    if unit_priced and resource.unit_price is None:
        raise ValueError(f"resource {resource_id} has consumptions counted in units")
    if resource.unit_price != old_price and unit_priced:
        group = session.get(Group, resource.group_id)
        members = _group_members(session, group.id)
        for c in unit_priced:
            shares = resolve_shares(
                consumption_cost(c, resource), c.shares, members, c.date,
                c.split_all, c.sharing_method, group.weights_enabled,
            )
            _store_shares(c, shares, ConsumptionMember)
            session.add(c)
        logger.info("resource %s: unit price %s -> %s, %d consumptions re-split",
                    resource_id, old_price, resource.unit_price, len(unit_priced))

    session.add(resource)
    session.commit()
    session.refresh(resource)
    return resource


def remove_resource(session: Session, resource_id: int) -> bool:
    """Delete a resource with its consumptions. Refused once a settlement pays to or from it."""
    resource = session.get(Resource, resource_id)
    if not resource:
        return False
    settled = session.exec(select(SettlementMember).where(or_(
        SettlementMember.from_resource_id == resource_id,
        SettlementMember.to_resource_id == resource_id,
    ))).first()
    if settled:
        raise ValueError(f"resource {resource_id} is part of settlement {settled.settlement_id}")
    session.delete(resource)
    session.commit()
    logger.info("resource %s removed", resource_id)
    return True
