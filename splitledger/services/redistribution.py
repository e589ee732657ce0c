# splitledger/services/redistribution.py
"""
Splitting an event amount over its participants.

Shares marked as manually edited ("pinned") keep their amount; whatever is
left of the total is spread over the other participants in proportion to
their weight. Callers re-run redistribute() explicitly whenever the
participant set, the total or a pin changes.
"""
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from splitledger.models.group import Member
from splitledger.services.weights import EQUAL, to_decimal, weight_of

ZERO = Decimal("0")


@dataclass(frozen=True)
class Share:
    member_id: int
    amount: Decimal = ZERO
    # stored per-share weight; None means "derive from the member"
    weight: Optional[Decimal] = None
    is_manually_edited: bool = False


def reconcile(participants: Sequence[Member], prior_shares: Iterable[Share]) -> List[Share]:
    """
    Align prior shares with the current participant set.

    Shares of participants that are gone are dropped, duplicates keep their
    first occurrence, and new participants are appended as unpinned shares.
    """
    present = {m.id for m in participants}
    seen = set()
    shares = []
    for share in prior_shares:
        if share.member_id in present and share.member_id not in seen:
            shares.append(share)
            seen.add(share.member_id)
    for member in participants:
        if member.id not in seen:
            shares.append(Share(member_id=member.id))
            seen.add(member.id)
    return shares


def redistribute(
    total_amount,
    participants: Sequence[Member],
    prior_shares: Iterable[Share] = (),
    sharing_method: str = EQUAL,
    weights_enabled: bool = True,
) -> List[Share]:
    """
    Compute per-participant amounts for total_amount.

    Pinned shares come first, unchanged. If nobody is left unpinned they are
    returned as-is even when they don't add up to the total (see difference()).
    The last unpinned share takes the division residue so the result sums to
    the total exactly; a negative remainder yields negative shares.
    """
    total = to_decimal(total_amount)
    by_id = {m.id: m for m in participants}
    shares = reconcile(participants, prior_shares)

    pinned = [s for s in shares if s.is_manually_edited]
    unpinned = [s for s in shares if not s.is_manually_edited]
    if not unpinned:
        return pinned

    remainder = total - sum((to_decimal(s.amount) for s in pinned), ZERO)
    weights = [
        to_decimal(s.weight) if s.weight is not None
        else weight_of(by_id.get(s.member_id), sharing_method, weights_enabled)
        for s in unpinned
    ]
    total_weight = sum(weights, ZERO)

    computed = []
    allocated = ZERO
    last = len(unpinned) - 1
    for i, (share, weight) in enumerate(zip(unpinned, weights)):
        if i == last:
            amount = remainder - allocated
        elif total_weight == 0:
            amount = remainder / len(unpinned)
        else:
            amount = remainder * weight / total_weight
        allocated += amount
        computed.append(replace(share, amount=amount))
    return pinned + computed


def pin(shares: Iterable[Share], member_id: int) -> List[Share]:
    """Freeze a participant's current amount. Nobody else is recomputed."""
    return [replace(s, is_manually_edited=True) if s.member_id == member_id else s for s in shares]


def unpin(
    total_amount,
    participants: Sequence[Member],
    shares: Iterable[Share],
    member_id: int,
    sharing_method: str = EQUAL,
    weights_enabled: bool = True,
) -> List[Share]:
    """Hand a pinned participant back to automatic splitting; its old amount is discarded."""
    released = [
        replace(s, amount=ZERO, is_manually_edited=False) if s.member_id == member_id else s
        for s in shares
    ]
    return redistribute(total_amount, participants, released, sharing_method, weights_enabled)


def set_manual_amount(
    total_amount,
    participants: Sequence[Member],
    shares: Iterable[Share],
    member_id: int,
    amount,
    sharing_method: str = EQUAL,
    weights_enabled: bool = True,
) -> List[Share]:
    """Pin a participant to a user-entered amount and re-split the rest."""
    edited = []
    found = False
    for s in shares:
        if s.member_id == member_id:
            s = replace(s, amount=to_decimal(amount), is_manually_edited=True)
            found = True
        edited.append(s)
    if not found:
        edited.append(Share(member_id=member_id, amount=to_decimal(amount), is_manually_edited=True))
    return redistribute(total_amount, participants, edited, sharing_method, weights_enabled)


def difference(total_amount, shares: Iterable[Share]) -> Decimal:
    """What is left unassigned (positive) or over-assigned (negative)."""
    return to_decimal(total_amount) - sum((to_decimal(s.amount) for s in shares), ZERO)
