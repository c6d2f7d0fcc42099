from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional


class RaffleState(IntEnum):
    ACCEPTING = 0
    DRAWING = 1


@dataclass
class RoundState:
    """Mutable state of the single running round."""

    phase: RaffleState = RaffleState.ACCEPTING
    entrants: List[str] = field(default_factory=list)
    window_start: int = 0
    last_winner: Optional[str] = None
    outstanding_request_id: Optional[int] = None
    last_fulfilled_request_id: Optional[int] = None
    balance: int = 0

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.name,
            "entrant_count": len(self.entrants),
            "window_start": self.window_start,
            "last_winner": self.last_winner,
            "outstanding_request_id": self.outstanding_request_id,
            "balance": str(self.balance),
        }


@dataclass(frozen=True)
class Notification:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    emitted_at: dt.datetime = field(default_factory=dt.datetime.utcnow)


ENTRANT_ACCEPTED = "EntrantAccepted"
DRAW_REQUESTED = "DrawRequested"
WINNER_CHOSEN = "WinnerChosen"
ROUND_RESET = "RoundReset"
