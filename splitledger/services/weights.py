# splitledger/services/weights.py
from decimal import Decimal
from typing import Iterable, Optional

from splitledger.models.group import Group, Member

EQUAL = "equal"
ONE = Decimal("1")


def to_decimal(value) -> Decimal:
    """Convert stored numbers (JSON floats, ints, strings) to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def weight_of(member: Optional[Member], sharing_method: str, weights_enabled: bool = True) -> Decimal:
    """
    Weight of a member for a sharing method.

    "equal" (or weights switched off for the group) gives every member 1.
    Otherwise sharing_method is a weight type id looked up in member.weights;
    a missing member or missing entry also counts as 1.
    """
    if sharing_method == EQUAL or not weights_enabled or member is None:
        return ONE
    value = (member.weights or {}).get(sharing_method)
    if value is None:
        return ONE
    return to_decimal(value)


def default_sharing_method(group: Group) -> str:
    weight_types = group.weight_types or []
    if group.weights_enabled and len(weight_types) > 1:
        for wt in weight_types:
            if wt.get("is_default"):
                return wt["id"]
        return EQUAL
    if group.weights_enabled and len(weight_types) == 1:
        return weight_types[0]["id"]
    return EQUAL


def is_weight_type_in_use(weight_type_id: str, expenses: Iterable, consumptions: Iterable) -> bool:
    """True if any expense or consumption shares by this weight type."""
    if any(e.sharing_method == weight_type_id for e in expenses):
        return True
    return any(c.sharing_method == weight_type_id for c in consumptions)
