from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, SQLModel

from splitledger.db import get_session
from splitledger.models.group import Group, Member
from splitledger.services.balance_service import aggregate, member_key, resource_key
from splitledger.services.cutoff import resolve_cutoff
from splitledger.services.group_service import update_group
from splitledger.services.member_service import MemberNotFound, add_member, remove_member, update_member
from splitledger.services.snapshot import GroupNotFound, load_group_snapshot

router = APIRouter()


class GroupIn(SQLModel):
    name: str
    description: Optional[str] = ""
    currency: str = "EUR"
    weights_enabled: bool = False
    weight_types: List[dict] = []


class GroupUpdate(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    weights_enabled: Optional[bool] = None
    weight_types: Optional[List[dict]] = None


class MemberIn(SQLModel):
    name: str
    email: Optional[str] = None
    weights: Dict[str, float] = {}
    active_from: Optional[datetime] = None
    active_to: Optional[datetime] = None


class MemberUpdate(SQLModel):
    name: Optional[str] = None
    email: Optional[str] = None
    weights: Optional[Dict[str, float]] = None
    active_from: Optional[datetime] = None
    active_to: Optional[datetime] = None


def group_out(g: Group) -> dict:
    return {
        "id": g.id, "name": g.name, "currency": g.currency,
        "weights_enabled": g.weights_enabled, "weight_types": g.weight_types,
    }


def member_out(m: Member) -> dict:
    return {
        "id": m.id, "name": m.name, "email": m.email, "weights": m.weights,
        "active_from": m.active_from, "active_to": m.active_to,
    }


@router.post("/groups")
def create_group(payload: GroupIn, s: Session = Depends(get_session)):
    if not payload.name.strip():
        raise HTTPException(400, "missing_group_name")
    g = Group(**payload.model_dump())
    s.add(g); s.commit(); s.refresh(g)
    return group_out(g)


@router.patch("/group/{group_id}")
def edit_group(group_id: int, payload: GroupUpdate, s: Session = Depends(get_session)):
    try:
        g = update_group(s, group_id, **payload.model_dump(exclude_unset=True))
    except GroupNotFound:
        raise HTTPException(404, "Group not found")
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return group_out(g)


@router.get("/group/{group_id}/balances")
def view_balances(group_id: int, s: Session = Depends(get_session)):
    try:
        snapshot = load_group_snapshot(s, group_id)
    except GroupNotFound:
        raise HTTPException(404, "Group not found")
    cutoff = resolve_cutoff(snapshot.settlements)
    nets = aggregate(snapshot, cutoff)
    return {
        "cutoff": cutoff,
        "balances": {str(k): str(v) for k, v in nets.items()},
        "members": [{"id": m.id, "name": m.name, "balance": str(nets[member_key(m.id)])} for m in snapshot.members],
        "resources": [{"id": r.id, "name": r.name, "balance": str(nets[resource_key(r.id)])} for r in snapshot.resources],
    }


@router.post("/group/{group_id}/members")
def create_member(group_id: int, payload: MemberIn, s: Session = Depends(get_session)):
    try:
        m = add_member(s, group_id, payload.name, payload.email, payload.weights,
                       payload.active_from, payload.active_to)
    except GroupNotFound:
        raise HTTPException(404, "Group not found")
    return member_out(m)


@router.patch("/member/{member_id}")
def edit_member(member_id: int, payload: MemberUpdate, s: Session = Depends(get_session)):
    changes = payload.model_dump(exclude_unset=True)
    try:
        m = update_member(s, member_id, **changes)
    except MemberNotFound:
        raise HTTPException(404, "Member not found")
    return member_out(m)


@router.post("/member/{member_id}/delete")
def delete_member(member_id: int, s: Session = Depends(get_session)):
    try:
        removed = remove_member(s, member_id)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if not removed:
        raise HTTPException(404, "Member not found")
    return {"success": True}
