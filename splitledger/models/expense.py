from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlmodel import Field, Relationship, SQLModel

RECURRING_TYPES = ("weekly", "monthly", "yearly")

class Expense(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id")
    paid_by_id: int = Field(foreign_key="member.id")
    title: str = ""
    description: Optional[str] = ""
    amount: Decimal = Field(max_digits=18, decimal_places=6)
    date: datetime = Field(default_factory=datetime.utcnow)
    split_all: bool = False
    sharing_method: str = "equal"
    is_recurring: bool = False
    recurring_type: Optional[str] = None
    recurring_start_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    shares: List["ExpenseMember"] = Relationship(
        back_populates="expense", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )

class ExpenseMember(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    expense_id: Optional[int] = Field(default=None, foreign_key="expense.id")
    member_id: int = Field(foreign_key="member.id")
    amount: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=6)
    weight: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=4)
    is_manually_edited: bool = False

    expense: Optional[Expense] = Relationship(back_populates="shares")
