from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlmodel import Field, Relationship, SQLModel

class Resource(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id")
    name: str
    description: Optional[str] = ""
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=6)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    consumptions: List["Consumption"] = Relationship(
        back_populates="resource", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )

class Consumption(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    resource_id: Optional[int] = Field(default=None, foreign_key="resource.id")
    description: Optional[str] = ""
    amount: Decimal = Field(max_digits=18, decimal_places=6)
    # amount is in resource units (priced by resource.unit_price) instead of currency
    is_unit_amount: bool = False
    date: datetime = Field(default_factory=datetime.utcnow)
    split_all: bool = False
    sharing_method: str = "equal"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    resource: Optional[Resource] = Relationship(back_populates="consumptions")
    shares: List["ConsumptionMember"] = Relationship(
        back_populates="consumption", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )

class ConsumptionMember(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    consumption_id: Optional[int] = Field(default=None, foreign_key="consumption.id")
    member_id: int = Field(foreign_key="member.id")
    amount: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=6)
    weight: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=4)
    is_manually_edited: bool = False

    consumption: Optional[Consumption] = Relationship(back_populates="shares")
