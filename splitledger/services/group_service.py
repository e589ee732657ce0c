# splitledger/services/group_service.py
import logging
from typing import List, Optional

from sqlmodel import Session, select

from splitledger.models.expense import Expense
from splitledger.models.group import Group
from splitledger.models.resource import Consumption, Resource
from splitledger.services.member_service import recalculate_group_shares
from splitledger.services.snapshot import GroupNotFound
from splitledger.services.weights import is_weight_type_in_use

logger = logging.getLogger(__name__)

_UNSET = object()


def update_group(
    session: Session,
    group_id: int,
    name: Optional[str] = None,
    description=_UNSET,
    currency: Optional[str] = None,
    weights_enabled: Optional[bool] = None,
    weight_types: Optional[List[dict]] = None,
) -> Group:
    """
    Edit a group's settings.

    A weight type that an expense or consumption still shares by cannot be
    dropped. Switching weights on or off, or changing the weight types,
    re-splits the stored split-all events.
    """
    group = session.get(Group, group_id)
    if not group:
        raise GroupNotFound(f"group {group_id} not found")
    if name is not None and not name.strip():
        raise ValueError("missing_group_name")

    resplit = False
    if weight_types is not None:
        kept = {wt["id"] for wt in weight_types}
        dropped = [wt["id"] for wt in group.weight_types or [] if wt["id"] not in kept]
        if dropped:
            expenses = session.exec(select(Expense).where(Expense.group_id == group_id)).all()
            consumptions = session.exec(
                select(Consumption).join(Resource).where(Resource.group_id == group_id)
            ).all()
            in_use = [wt for wt in dropped if is_weight_type_in_use(wt, expenses, consumptions)]
            if in_use:
                raise ValueError(f"weight types still in use: {in_use}")
        resplit = list(weight_types) != list(group.weight_types or [])
        group.weight_types = list(weight_types)
    if weights_enabled is not None and weights_enabled != group.weights_enabled:
        group.weights_enabled = weights_enabled
        resplit = True
    if name is not None:
        group.name = name
    if description is not _UNSET:
        group.description = description
    if currency is not None:
        group.currency = currency

    session.add(group)
    session.flush()
    if resplit:
        recalculate_group_shares(session, group)
    session.commit()
    session.refresh(group)
    logger.info("group %s updated", group_id)
    return group
