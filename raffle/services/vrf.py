from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set

from web3 import Web3

from ..exceptions import (
    InsufficientSubscriptionBalance,
    InvalidConsumer,
    InvalidRandomWords,
    InvalidSubscription,
    NonexistentRequest,
)

# Consumer callback: (sender, request_id, random_words) -> winner or None
FulfillCallback = Callable[[str, int, Sequence[int]], Optional[str]]

BASE_FEE = 25 * 10**16
MAX_NUM_WORDS = 500


@dataclass
class Subscription:
    subscription_id: int
    balance: int = 0
    consumers: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class RandomWordsRequest:
    request_id: int
    subscription_id: int
    consumer: str
    gas_lane: str
    callback_gas_limit: int
    request_confirmations: int
    num_words: int
    requested_at: int

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "subscription_id": self.subscription_id,
            "consumer": self.consumer,
            "gas_lane": self.gas_lane,
            "callback_gas_limit": self.callback_gas_limit,
            "request_confirmations": self.request_confirmations,
            "num_words": self.num_words,
            "requested_at": self.requested_at,
        }


def derive_random_words(request_id: int, num_words: int) -> List[int]:
    """Deterministic words: keccak256(abi.encode(request_id, i)) for each index."""
    return [
        int.from_bytes(Web3.solidity_keccak(["uint256", "uint256"], [request_id, i]), "big")
        for i in range(num_words)
    ]


class LocalVRFCoordinator:
    """In-process randomness oracle for development and tests.

    Requests are held until ``fulfill_random_words`` is called, at which point
    the request is forgotten and the words are delivered to the registered
    consumer. A request can therefore be fulfilled at most once.
    """

    def __init__(
        self,
        address: str,
        base_fee: int = BASE_FEE,
        clock: Optional[Callable[[], int]] = None,
        next_request_id: int = 1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.address = Web3.to_checksum_address(address)
        self._base_fee = base_fee
        self._clock = clock or (lambda: int(time.time()))
        self._logger = logger or logging.getLogger("chainraffle.vrf")
        self._subscriptions: Dict[int, Subscription] = {}
        self._requests: Dict[int, RandomWordsRequest] = {}
        self._callbacks: Dict[str, FulfillCallback] = {}
        self._next_subscription_id = 1
        self._next_request_id = next_request_id

    # Subscriptions ------------------------------------------------------- #

    def create_subscription(self, subscription_id: Optional[int] = None) -> int:
        if subscription_id is None:
            subscription_id = self._next_subscription_id
        elif subscription_id in self._subscriptions:
            raise InvalidSubscription(subscription_id)
        self._next_subscription_id = max(self._next_subscription_id, subscription_id) + 1
        self._subscriptions[subscription_id] = Subscription(subscription_id)
        self._logger.info("Subscription %s created", subscription_id)
        return subscription_id

    def fund_subscription(self, subscription_id: int, amount: int) -> int:
        subscription = self.get_subscription(subscription_id)
        subscription.balance += int(amount)
        return subscription.balance

    def add_consumer(
        self, subscription_id: int, consumer: str, callback: Optional[FulfillCallback] = None
    ) -> None:
        subscription = self.get_subscription(subscription_id)
        consumer = Web3.to_checksum_address(consumer)
        subscription.consumers.add(consumer)
        if callback is not None:
            self._callbacks[consumer] = callback

    def get_subscription(self, subscription_id: int) -> Subscription:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise InvalidSubscription(subscription_id)
        return subscription

    # Requests ------------------------------------------------------------ #

    def client_for(self, consumer: str) -> "VRFClient":
        return VRFClient(self, Web3.to_checksum_address(consumer))

    def request_random_words(
        self,
        consumer: str,
        gas_lane: str,
        subscription_id: int,
        confirmations: int,
        gas_limit: int,
        num_words: int,
    ) -> int:
        subscription = self.get_subscription(subscription_id)
        if consumer not in subscription.consumers:
            raise InvalidConsumer(subscription_id, consumer)
        if not 1 <= num_words <= MAX_NUM_WORDS:
            raise InvalidRandomWords(f"num_words must be between 1 and {MAX_NUM_WORDS}")

        request_id = self._next_request_id
        self._next_request_id += 1
        self._requests[request_id] = RandomWordsRequest(
            request_id=request_id,
            subscription_id=subscription_id,
            consumer=consumer,
            gas_lane=gas_lane,
            callback_gas_limit=gas_limit,
            request_confirmations=confirmations,
            num_words=num_words,
            requested_at=self._clock(),
        )
        self._logger.info(
            "Random words requested: request=%s consumer=%s words=%s",
            request_id,
            consumer,
            num_words,
        )
        return request_id

    def pending_requests(self) -> List[RandomWordsRequest]:
        return [self._requests[key] for key in sorted(self._requests)]

    def restore_request(
        self,
        request_id: int,
        consumer: str,
        gas_lane: str,
        subscription_id: int,
        confirmations: int,
        gas_limit: int,
        num_words: int,
    ) -> RandomWordsRequest:
        """Re-register a request issued by an earlier instance so it can still be fulfilled."""
        subscription = self.get_subscription(subscription_id)
        consumer = Web3.to_checksum_address(consumer)
        if consumer not in subscription.consumers:
            raise InvalidConsumer(subscription_id, consumer)
        request = RandomWordsRequest(
            request_id=request_id,
            subscription_id=subscription_id,
            consumer=consumer,
            gas_lane=gas_lane,
            callback_gas_limit=gas_limit,
            request_confirmations=confirmations,
            num_words=num_words,
            requested_at=self._clock(),
        )
        self._requests[request_id] = request
        self._next_request_id = max(self._next_request_id, request_id + 1)
        self._logger.info("Pending request %s restored for %s", request_id, consumer)
        return request

    def fulfill_random_words(
        self, request_id: int, random_words: Optional[Sequence[int]] = None
    ) -> Optional[str]:
        request = self._requests.get(request_id)
        if request is None:
            raise NonexistentRequest(request_id)

        if random_words is None:
            words = derive_random_words(request_id, request.num_words)
        else:
            words = [int(word) for word in random_words]
            if len(words) != request.num_words:
                raise InvalidRandomWords(
                    f"Expected {request.num_words} words, got {len(words)}"
                )
            if any(word < 0 for word in words):
                raise InvalidRandomWords("Random words must be unsigned integers")

        subscription = self.get_subscription(request.subscription_id)
        if subscription.balance < self._base_fee:
            raise InsufficientSubscriptionBalance(
                f"Subscription {subscription.subscription_id} balance {subscription.balance}"
                f" is below the fee of {self._base_fee}"
            )
        subscription.balance -= self._base_fee
        del self._requests[request_id]

        callback = self._callbacks.get(request.consumer)
        if callback is None:
            self._logger.warning("No callback registered for consumer %s", request.consumer)
            return None
        self._logger.info("Fulfilling request %s for %s", request_id, request.consumer)
        return callback(self.address, request_id, words)


class VRFClient:
    """The consumer-side view of the oracle: requests are made as ``consumer``."""

    def __init__(self, coordinator: LocalVRFCoordinator, consumer: str) -> None:
        self._coordinator = coordinator
        self._consumer = consumer

    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        confirmations: int,
        gas_limit: int,
        num_words: int,
    ) -> int:
        return self._coordinator.request_random_words(
            self._consumer, gas_lane, subscription_id, confirmations, gas_limit, num_words
        )
