from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from ..db import session_scope
from ..models import Entrant, NotificationRecord, RoundStateRecord
from ..types import Notification, RaffleState, RoundState


def _to_uint(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None


def _from_uint(value: Optional[int]) -> Optional[str]:
    return str(value) if value is not None else None


class SqlRoundStore:
    """Persists the round snapshot and the notification log in one transaction."""

    def load(self) -> Optional[RoundState]:
        with session_scope() as session:
            record = session.get(RoundStateRecord, 1)
            if record is None:
                return None
            entrants = [
                row.address
                for row in session.query(Entrant).order_by(Entrant.position.asc()).all()
            ]
            return RoundState(
                phase=RaffleState(int(record.phase)),
                entrants=entrants,
                window_start=int(record.window_start),
                last_winner=record.last_winner,
                outstanding_request_id=_to_uint(record.outstanding_request_id),
                last_fulfilled_request_id=_to_uint(record.last_fulfilled_request_id),
                balance=int(record.balance),
            )

    def commit(self, state: RoundState, notifications: Sequence[Notification]) -> None:
        with session_scope() as session:
            record = session.get(RoundStateRecord, 1)
            if record is None:
                record = RoundStateRecord(id=1)
                session.add(record)
            record.phase = int(state.phase)
            record.window_start = state.window_start
            record.last_winner = state.last_winner
            record.outstanding_request_id = _from_uint(state.outstanding_request_id)
            record.last_fulfilled_request_id = _from_uint(state.last_fulfilled_request_id)
            record.balance = str(state.balance)

            # Entrants are only ever appended or cleared.
            stored = session.query(Entrant).count()
            if stored > len(state.entrants):
                session.query(Entrant).filter(Entrant.position >= len(state.entrants)).delete()
                stored = len(state.entrants)
            for position in range(stored, len(state.entrants)):
                session.add(Entrant(position=position, address=state.entrants[position]))

            for notification in notifications:
                row = NotificationRecord(name=notification.name, emitted_at=notification.emitted_at)
                row.set_args(notification.args)
                session.add(row)
            session.flush()

    def list_notifications(self, after: int = 0, limit: Optional[int] = None) -> List[Dict[str, object]]:
        with session_scope() as session:
            query = (
                session.query(NotificationRecord)
                .filter(NotificationRecord.sequence > after)
                .order_by(NotificationRecord.sequence.asc())
            )
            if limit:
                query = query.limit(limit)
            return [row.to_dict() for row in query.all()]

