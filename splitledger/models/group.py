from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel

class Group(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = ""
    currency: str = "EUR"
    weights_enabled: bool = False
    # [{"id": "default", "name": "Default", "is_default": True}, ...]
    weight_types: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Member(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="group.id")
    name: str
    email: Optional[str] = None
    # weight type id -> weight
    weights: Dict[str, float] = Field(default_factory=dict, sa_column=Column(JSON))
    active_from: Optional[datetime] = None
    active_to: Optional[datetime] = None

    def is_active_on(self, when: datetime) -> bool:
        return (self.active_from is None or self.active_from <= when) and (
            self.active_to is None or self.active_to >= when
        )
