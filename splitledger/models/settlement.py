from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlmodel import Field, Relationship, SQLModel

OPEN = "open"
COMPLETED = "completed"
STATUSES = (OPEN, COMPLETED)

class Settlement(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id")
    title: str = ""
    description: Optional[str] = ""
    # mirrors the status derived from the members; written by settlement_service only
    status: str = OPEN
    created_at: datetime = Field(default_factory=datetime.utcnow)

    members: List["SettlementMember"] = Relationship(
        back_populates="settlement", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )

class SettlementMember(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    settlement_id: Optional[int] = Field(default=None, foreign_key="settlement.id")
    from_member_id: Optional[int] = Field(default=None, foreign_key="member.id")
    from_resource_id: Optional[int] = Field(default=None, foreign_key="resource.id")
    to_member_id: Optional[int] = Field(default=None, foreign_key="member.id")
    to_resource_id: Optional[int] = Field(default=None, foreign_key="resource.id")
    amount: Decimal = Field(max_digits=18, decimal_places=6)
    status: str = OPEN
    created_at: datetime = Field(default_factory=datetime.utcnow)

    settlement: Optional[Settlement] = Relationship(back_populates="members")
