from __future__ import annotations

import copy
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Protocol, Sequence, Tuple

from web3 import Web3

from ..config import RaffleSettings, VRFSettings, validate_settings
from ..exceptions import (
    EntrantNotFound,
    InsufficientPayment,
    InvalidRandomWords,
    OnlyCoordinatorCanFulfill,
    PayoutFailed,
    RaffleError,
    RequestMismatch,
    RoundClosed,
    UpkeepNotNeeded,
)
from ..types import (
    DRAW_REQUESTED,
    ENTRANT_ACCEPTED,
    ROUND_RESET,
    WINNER_CHOSEN,
    Notification,
    RaffleState,
    RoundState,
)


class RandomnessOracleProtocol(Protocol):
    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        confirmations: int,
        gas_limit: int,
        num_words: int,
    ) -> int:
        ...


class LedgerProtocol(Protocol):
    def transfer(self, recipient: str, amount: int) -> bool:
        ...


class RoundStoreProtocol(Protocol):
    def commit(self, state: RoundState, notifications: Sequence[Notification]) -> None:
        ...


class InMemoryRoundStore:
    """Keeps the last committed snapshot and the notification log in memory."""

    def __init__(self) -> None:
        self.snapshot: Optional[RoundState] = None
        self.notifications: List[Notification] = []

    def commit(self, state: RoundState, notifications: Sequence[Notification]) -> None:
        self.snapshot = copy.deepcopy(state)
        self.notifications.extend(notifications)


def normalise_address(address: str) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise RaffleError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)


class RaffleCoordinator:
    """State machine for a single repeating raffle.

    Rounds cycle ACCEPTING -> DRAWING -> ACCEPTING. Every mutating call works on
    a draft copy of the round state which is only swapped in once the store has
    committed it, so a failed precondition or a failed commit leaves the live
    state untouched. Callers are expected to serialise access.
    """

    def __init__(
        self,
        raffle: RaffleSettings,
        vrf: VRFSettings,
        oracle: RandomnessOracleProtocol,
        ledger: LedgerProtocol,
        store: Optional[RoundStoreProtocol] = None,
        state: Optional[RoundState] = None,
        clock: Optional[Callable[[], int]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        validate_settings(raffle, vrf)
        self._raffle = raffle
        self._vrf = vrf
        self._oracle = oracle
        self._ledger = ledger
        self._store = store or InMemoryRoundStore()
        self._clock = clock or (lambda: int(time.time()))
        self._logger = logger or logging.getLogger("chainraffle.coordinator")
        if state is None:
            state = RoundState(window_start=self._clock())
            self._store.commit(state, [])
        self._state = state

    # --------------------------------------------------------------------- #
    # Read-only accessors
    # --------------------------------------------------------------------- #

    @property
    def address(self) -> str:
        return self._raffle.address

    @property
    def entrance_fee(self) -> int:
        return self._raffle.entrance_fee

    @property
    def interval(self) -> int:
        return self._raffle.interval_seconds

    @property
    def num_words(self) -> int:
        return self._vrf.num_words

    @property
    def request_confirmations(self) -> int:
        return self._vrf.request_confirmations

    @property
    def last_winner(self) -> Optional[str]:
        return self._state.last_winner

    @property
    def phase(self) -> RaffleState:
        return self._state.phase

    @property
    def window_start(self) -> int:
        return self._state.window_start

    @property
    def balance(self) -> int:
        return self._state.balance

    @property
    def entrant_count(self) -> int:
        return len(self._state.entrants)

    @property
    def outstanding_request_id(self) -> Optional[int]:
        return self._state.outstanding_request_id

    def entrant(self, index: int) -> str:
        if index < 0 or index >= len(self._state.entrants):
            raise EntrantNotFound(index)
        return self._state.entrants[index]

    def snapshot(self) -> RoundState:
        return copy.deepcopy(self._state)

    # --------------------------------------------------------------------- #
    # Operations
    # --------------------------------------------------------------------- #

    def enter(self, caller: str, payment: int) -> None:
        player = normalise_address(caller)
        if self._state.phase != RaffleState.ACCEPTING:
            raise RoundClosed()
        if payment < self._raffle.entrance_fee:
            raise InsufficientPayment(payment, self._raffle.entrance_fee)

        with self._transaction() as (draft, emit):
            draft.entrants.append(player)
            draft.balance += payment
            emit(ENTRANT_ACCEPTED, player=player)
        self._logger.info(
            "Entrant %s accepted (%s entrants, balance=%s)",
            player,
            len(self._state.entrants),
            self._state.balance,
        )

    def evaluate_draw_readiness(self, check_data: bytes = b"") -> Tuple[bool, bytes]:
        state = self._state
        time_passed = self._clock() - state.window_start >= self._raffle.interval_seconds
        has_players = len(state.entrants) > 0
        is_open = state.phase == RaffleState.ACCEPTING
        has_balance = state.balance > 0
        return (time_passed and has_players and is_open and has_balance), b""

    def trigger_draw(self, perform_data: bytes = b"") -> int:
        upkeep_needed, _ = self.evaluate_draw_readiness(b"")
        if not upkeep_needed:
            raise UpkeepNotNeeded(
                self._state.balance, len(self._state.entrants), self._state.phase.name
            )

        with self._transaction() as (draft, emit):
            draft.phase = RaffleState.DRAWING
            request_id = self._oracle.request_random_words(
                self._vrf.gas_lane,
                self._vrf.subscription_id,
                self._vrf.request_confirmations,
                self._vrf.callback_gas_limit,
                self._vrf.num_words,
            )
            draft.outstanding_request_id = request_id
            emit(DRAW_REQUESTED, request_id=request_id)
        self._logger.info(
            "Draw requested: request=%s entrants=%s", request_id, len(self._state.entrants)
        )
        return request_id

    def raw_fulfill_random_words(
        self, sender: str, request_id: int, random_words: Sequence[int]
    ) -> Optional[str]:
        """Oracle delivery entry point.

        Only the configured randomness coordinator may deliver. A repeat delivery
        of the request that was consumed last is ignored and returns ``None``.
        """
        expected = self._vrf.coordinator_address
        if normalise_address(sender) != Web3.to_checksum_address(expected):
            raise OnlyCoordinatorCanFulfill(sender, expected)
        if (
            self._state.outstanding_request_id is None
            and request_id == self._state.last_fulfilled_request_id
        ):
            self._logger.warning("Ignoring duplicate delivery for request %s", request_id)
            return None
        return self.on_randomness_delivered(request_id, random_words)

    def on_randomness_delivered(self, request_id: int, random_words: Sequence[int]) -> str:
        state = self._state
        if state.phase != RaffleState.DRAWING or state.outstanding_request_id != request_id:
            raise RequestMismatch(request_id, state.outstanding_request_id)
        if not random_words:
            raise InvalidRandomWords("At least one random word is required")

        # Modulo bias is accepted for entrant counts far below 2**256.
        index = int(random_words[0]) % len(state.entrants)
        winner = state.entrants[index]
        prize = state.balance

        # The round is reset and the prize drained before any funds move.
        with self._transaction() as (draft, emit):
            draft.last_winner = winner
            emit(WINNER_CHOSEN, winner=winner)
            draft.phase = RaffleState.ACCEPTING
            draft.window_start = max(self._clock(), draft.window_start)
            draft.entrants = []
            draft.outstanding_request_id = None
            draft.last_fulfilled_request_id = request_id
            draft.balance -= prize
            emit(ROUND_RESET)
        self._logger.info("Winner picked: %s (index %s, prize=%s)", winner, index, prize)

        if not self._ledger.transfer(winner, prize):
            self._logger.error(
                "Payout of %s to %s failed; funds remain with the coordinator", prize, winner
            )
            with self._transaction() as (draft, _emit):
                draft.balance += prize
            raise PayoutFailed(winner, prize)
        return winner

    # --------------------------------------------------------------------- #
    # Internal helpers
    # --------------------------------------------------------------------- #

    @contextmanager
    def _transaction(self) -> Iterator[Tuple[RoundState, Callable[..., None]]]:
        draft = copy.deepcopy(self._state)
        notifications: List[Notification] = []

        def emit(name: str, **args) -> None:
            notifications.append(Notification(name=name, args=args))

        yield draft, emit
        self._store.commit(draft, notifications)
        self._state = draft
