from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, SQLModel

from splitledger.db import get_session
from splitledger.models.settlement import Settlement, SettlementMember
from splitledger.services.balance_service import settlement_endpoints
from splitledger.services.settlement_service import (
    NoSettlementNeeded,
    SettlementMemberNotFound,
    SettlementPlanError,
    SettlementStrategy,
    create_settlement,
    remove_settlement,
    update_settlement_member_status,
)
from splitledger.services.snapshot import GroupNotFound

router = APIRouter()


class SettlementIn(SQLModel):
    title: str = ""
    description: Optional[str] = ""
    settlement_type: SettlementStrategy = SettlementStrategy.OPTIMIZED
    center_id: Optional[int] = None


class StatusIn(SQLModel):
    status: str


def transaction_out(sm: SettlementMember) -> dict:
    src, dst = settlement_endpoints(sm)
    return {
        "id": sm.id,
        "from": str(src) if src else None,
        "to": str(dst) if dst else None,
        "amount": str(sm.amount),
        "status": sm.status,
    }


def settlement_out(st: Settlement) -> dict:
    return {
        "id": st.id, "title": st.title, "status": st.status, "created_at": st.created_at,
        "transactions": [transaction_out(sm) for sm in sorted(st.members, key=lambda m: m.id)],
    }


@router.post("/group/{group_id}/settlements")
def add_settlement(group_id: int, payload: SettlementIn, s: Session = Depends(get_session)):
    try:
        st = create_settlement(s, group_id, payload.settlement_type, payload.center_id,
                               payload.title, payload.description)
    except GroupNotFound:
        raise HTTPException(404, "Group not found")
    except SettlementPlanError as exc:
        raise HTTPException(400, str(exc))
    except NoSettlementNeeded as exc:
        raise HTTPException(409, str(exc))
    return settlement_out(st)


@router.post("/settlement-member/{settlement_member_id}/status")
def set_transaction_status(settlement_member_id: int, payload: StatusIn, s: Session = Depends(get_session)):
    try:
        sm = update_settlement_member_status(s, settlement_member_id, payload.status)
    except SettlementMemberNotFound:
        raise HTTPException(404, "Settlement transaction not found")
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {**transaction_out(sm), "settlement": settlement_out(sm.settlement)}


@router.post("/settlement/{settlement_id}/delete")
def delete_settlement(settlement_id: int, s: Session = Depends(get_session)):
    if not remove_settlement(s, settlement_id):
        raise HTTPException(404, "Settlement not found")
    return {"success": True}
