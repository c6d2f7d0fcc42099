"""
Raffle error taxonomy.

Every precondition failure is raised before any state is touched, so callers can
retry or report without cleanup. ``PayoutFailed`` is the one error raised after
the round has already been reset.
"""
from __future__ import annotations

from typing import Optional


class RaffleError(Exception):
    """Base class for all coordinator errors."""
    status_code = 400

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": str(self)}


class InvalidConfiguration(RaffleError):
    status_code = 500


# ============ Entry ============

class InsufficientPayment(RaffleError):
    status_code = 402

    def __init__(self, paid: int, required: int):
        self.paid = paid
        self.required = required
        super().__init__(f"Payment of {paid} is below the entrance fee of {required}")


class RoundClosed(RaffleError):
    """The round is drawing; entries reopen after the payout."""
    status_code = 409

    def __init__(self):
        super().__init__("Raffle is not accepting entrants")


class EntrantNotFound(RaffleError):
    status_code = 404

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"No entrant at index {index}")


# ============ Draw ============

class UpkeepNotNeeded(RaffleError):
    """Carries the snapshot the readiness check failed on."""
    status_code = 409

    def __init__(self, balance: int, entrant_count: int, phase: str):
        self.balance = balance
        self.entrant_count = entrant_count
        self.phase = phase
        super().__init__(
            f"Upkeep not needed (balance={balance}, entrants={entrant_count}, phase={phase})"
        )

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload.update(
            balance=str(self.balance), entrant_count=self.entrant_count, phase=self.phase
        )
        return payload


class RequestMismatch(RaffleError):
    status_code = 409

    def __init__(self, request_id: int, outstanding: Optional[int]):
        self.request_id = request_id
        self.outstanding = outstanding
        super().__init__(
            f"Randomness for request {request_id} does not match outstanding request {outstanding}"
        )


class OnlyCoordinatorCanFulfill(RaffleError):
    status_code = 403

    def __init__(self, sender: str, coordinator: str):
        self.sender = sender
        self.coordinator = coordinator
        super().__init__(f"Only {coordinator} can fulfill randomness, not {sender}")


class PayoutFailed(RaffleError):
    """The transfer to the winner failed after the round was already reset."""
    status_code = 502

    def __init__(self, winner: str, amount: int):
        self.winner = winner
        self.amount = amount
        super().__init__(f"Transfer of {amount} to {winner} failed")


# ============ Randomness oracle ============

class VRFError(RaffleError):
    pass


class InvalidSubscription(VRFError):
    status_code = 404

    def __init__(self, subscription_id: int):
        self.subscription_id = subscription_id
        super().__init__(f"Subscription {subscription_id} does not exist")


class InvalidConsumer(VRFError):
    status_code = 403

    def __init__(self, subscription_id: int, consumer: str):
        super().__init__(f"{consumer} is not a consumer of subscription {subscription_id}")


class InsufficientSubscriptionBalance(VRFError):
    status_code = 402


class NonexistentRequest(VRFError):
    status_code = 404

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Request {request_id} does not exist")


class InvalidRandomWords(VRFError):
    pass
