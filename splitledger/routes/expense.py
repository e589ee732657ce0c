from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, SQLModel

from splitledger.db import get_session
from splitledger.services.expense_service import (
    ConsumptionNotFound,
    ExpenseNotFound,
    ResourceNotFound,
    create_consumption,
    create_expense,
    create_resource,
    delete_expense,
    remove_consumption,
    remove_resource,
    update_consumption,
    update_expense,
    update_resource,
)
from splitledger.services.redistribution import difference
from splitledger.services.snapshot import GroupNotFound, consumption_cost

router = APIRouter()

CENT = Decimal("0.01")


class MemberAmountIn(SQLModel):
    member_id: int
    amount: Optional[Decimal] = None
    weight: Optional[Decimal] = None


class ExpenseIn(SQLModel):
    title: str = ""
    description: Optional[str] = ""
    amount: Decimal
    paid_by_id: int
    date: Optional[datetime] = None
    split_all: bool = False
    member_ids: List[int] = []
    sharing_method: Optional[str] = None
    member_amounts: List[MemberAmountIn] = []
    is_recurring: bool = False
    recurring_type: Optional[str] = None
    recurring_start_date: Optional[datetime] = None


class ExpenseUpdate(SQLModel):
    title: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    paid_by_id: Optional[int] = None
    date: Optional[datetime] = None
    split_all: Optional[bool] = None
    member_ids: Optional[List[int]] = None
    sharing_method: Optional[str] = None
    member_amounts: Optional[List[MemberAmountIn]] = None
    is_recurring: Optional[bool] = None
    recurring_type: Optional[str] = None
    recurring_start_date: Optional[datetime] = None


class ResourceIn(SQLModel):
    name: str
    description: Optional[str] = ""
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = None


class ResourceUpdate(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = None


class ConsumptionIn(SQLModel):
    description: Optional[str] = ""
    amount: Decimal
    is_unit_amount: bool = False
    date: Optional[datetime] = None
    split_all: bool = False
    member_ids: List[int] = []
    sharing_method: Optional[str] = None
    member_amounts: List[MemberAmountIn] = []


class ConsumptionUpdate(SQLModel):
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    is_unit_amount: Optional[bool] = None
    date: Optional[datetime] = None
    split_all: Optional[bool] = None
    member_ids: Optional[List[int]] = None
    sharing_method: Optional[str] = None
    member_amounts: Optional[List[MemberAmountIn]] = None


def shares_out(total, shares) -> dict:
    return {
        "shares": [
            {"member_id": sh.member_id, "amount": str(sh.amount), "is_manually_edited": sh.is_manually_edited}
            for sh in shares
        ],
        # non-zero when pins alone do not add up to the total
        "difference": str(difference(total, shares).quantize(CENT)),
    }


def expense_out(e) -> dict:
    return {"id": e.id, "amount": str(e.amount), "date": e.date, **shares_out(e.amount, e.shares)}


def consumption_out(c) -> dict:
    cost = consumption_cost(c, c.resource)
    return {"id": c.id, "amount": str(c.amount), "cost": str(cost), **shares_out(cost, c.shares)}


def resource_out(r) -> dict:
    return {"id": r.id, "name": r.name, "unit": r.unit,
            "unit_price": None if r.unit_price is None else str(r.unit_price)}


@router.post("/group/{group_id}/expenses")
def add_expense(group_id: int, payload: ExpenseIn, s: Session = Depends(get_session)):
    data = payload.model_dump()
    try:
        e = create_expense(s, group_id, **data)
    except GroupNotFound:
        raise HTTPException(404, "Group not found")
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return expense_out(e)


@router.patch("/expense/{expense_id}")
def edit_expense(expense_id: int, payload: ExpenseUpdate, s: Session = Depends(get_session)):
    try:
        e = update_expense(s, expense_id, **payload.model_dump(exclude_unset=True))
    except ExpenseNotFound:
        raise HTTPException(404, "Expense not found")
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return expense_out(e)


@router.post("/group/{group_id}/expense/{expense_id}/delete")
def remove_expense(group_id: int, expense_id: int, s: Session = Depends(get_session)):
    if not delete_expense(s, expense_id):
        raise HTTPException(404, "Expense not found")
    return {"success": True}


@router.post("/group/{group_id}/resources")
def add_resource(group_id: int, payload: ResourceIn, s: Session = Depends(get_session)):
    try:
        r = create_resource(s, group_id, **payload.model_dump())
    except GroupNotFound:
        raise HTTPException(404, "Group not found")
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return resource_out(r)


@router.patch("/resource/{resource_id}")
def edit_resource(resource_id: int, payload: ResourceUpdate, s: Session = Depends(get_session)):
    try:
        r = update_resource(s, resource_id, **payload.model_dump(exclude_unset=True))
    except ResourceNotFound:
        raise HTTPException(404, "Resource not found")
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return resource_out(r)


@router.post("/resource/{resource_id}/delete")
def delete_resource(resource_id: int, s: Session = Depends(get_session)):
    try:
        removed = remove_resource(s, resource_id)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if not removed:
        raise HTTPException(404, "Resource not found")
    return {"success": True}


@router.post("/resource/{resource_id}/consumptions")
def add_consumption(resource_id: int, payload: ConsumptionIn, s: Session = Depends(get_session)):
    data = payload.model_dump()
    try:
        c = create_consumption(s, resource_id, **data)
    except ResourceNotFound:
        raise HTTPException(404, "Resource not found")
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return consumption_out(c)


@router.patch("/consumption/{consumption_id}")
def edit_consumption(consumption_id: int, payload: ConsumptionUpdate, s: Session = Depends(get_session)):
    try:
        c = update_consumption(s, consumption_id, **payload.model_dump(exclude_unset=True))
    except ConsumptionNotFound:
        raise HTTPException(404, "Consumption not found")
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return consumption_out(c)


@router.post("/consumption/{consumption_id}/delete")
def delete_consumption(consumption_id: int, s: Session = Depends(get_session)):
    if not remove_consumption(s, consumption_id):
        raise HTTPException(404, "Consumption not found")
    return {"success": True}
