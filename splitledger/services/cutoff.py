# splitledger/services/cutoff.py
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlmodel import Session, select

from splitledger.models.settlement import COMPLETED, OPEN, Settlement, SettlementMember

logger = logging.getLogger(__name__)


def settlement_status(members: Iterable[SettlementMember]) -> str:
    """A settlement is completed once every one of its transactions is."""
    members = list(members)
    if members and all(m.status == COMPLETED for m in members):
        return COMPLETED
    return OPEN


def resolve_cutoff(settlements: Iterable[Settlement]) -> Optional[datetime]:
    """
    Date before which history counts as settled.

    That is the creation time of the latest completed settlement, unless an
    older settlement is still open; then nothing is cut off.
    """
    settlements = list(settlements)
    completed = [s for s in settlements if settlement_status(s.members) == COMPLETED]
    if not completed:
        return None
    latest = max(completed, key=lambda s: (s.created_at, s.id or 0))
    for s in settlements:
        if settlement_status(s.members) == OPEN and s.created_at < latest.created_at:
            logger.debug(
                "settlement %s still open before completed settlement %s; no cutoff", s.id, latest.id
            )
            return None
    return latest.created_at


def get_settlement_cutoff_date(session: Session, group_id: int) -> Optional[datetime]:
    settlements = session.exec(select(Settlement).where(Settlement.group_id == group_id)).all()
    return resolve_cutoff(settlements)
