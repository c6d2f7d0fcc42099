from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RafflePhase(str, Enum):
    ACCEPTING = "ACCEPTING"
    DRAWING = "DRAWING"


@dataclass(frozen=True)
class UpkeepCheck:
    upkeep_needed: bool
    perform_data: str = "0x"


@dataclass(frozen=True)
class RaffleSnapshot:
    phase: RafflePhase
    entrant_count: int
    balance: int
    window_start: int
    outstanding_request_id: Optional[int] = None
