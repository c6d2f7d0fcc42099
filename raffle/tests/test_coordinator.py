import unittest
from unittest import mock

from web3 import Web3

from raffle.config import RaffleSettings, VRFSettings
from raffle.exceptions import (
    EntrantNotFound,
    InsufficientPayment,
    InvalidConfiguration,
    InvalidConsumer,
    NonexistentRequest,
    OnlyCoordinatorCanFulfill,
    PayoutFailed,
    RequestMismatch,
    RoundClosed,
    UpkeepNotNeeded,
)
from raffle.services.coordinator import InMemoryRoundStore, RaffleCoordinator
from raffle.services.ledger import InMemoryLedger
from raffle.services.vrf import LocalVRFCoordinator, derive_random_words
from raffle.types import RaffleState

RAFFLE_ADDRESS = Web3.to_checksum_address("0x" + "11" * 20)
VRF_ADDRESS = Web3.to_checksum_address("0x" + "22" * 20)
ALICE = Web3.to_checksum_address("0x" + "a1" * 20)
BOB = Web3.to_checksum_address("0x" + "b2" * 20)
CAROL = Web3.to_checksum_address("0x" + "c3" * 20)
DAVE = Web3.to_checksum_address("0x" + "d4" * 20)


class FakeClock:
    def __init__(self, now: int = 1_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class RaffleCoordinatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.ledger = InMemoryLedger()
        self.store = InMemoryRoundStore()
        self.vrf = LocalVRFCoordinator(VRF_ADDRESS, clock=self.clock)
        self.subscription_id = self.vrf.create_subscription()
        self.vrf.fund_subscription(self.subscription_id, 10**20)
        self.coordinator = self._make_coordinator()
        self.vrf.add_consumer(
            self.subscription_id, RAFFLE_ADDRESS, self.coordinator.raw_fulfill_random_words
        )

    def _make_coordinator(self, **raffle_overrides) -> RaffleCoordinator:
        raffle_kwargs = {"entrance_fee": 1, "interval_seconds": 3600, "address": RAFFLE_ADDRESS}
        raffle_kwargs.update(raffle_overrides)
        return RaffleCoordinator(
            RaffleSettings(**raffle_kwargs),
            VRFSettings(subscription_id=self.subscription_id, coordinator_address=VRF_ADDRESS),
            oracle=self.vrf.client_for(RAFFLE_ADDRESS),
            ledger=self.ledger,
            store=self.store,
            clock=self.clock,
        )

    def _enter_all(self, *players: str) -> None:
        for player in players:
            self.coordinator.enter(player, 1)

    def _notification_names(self):
        return [n.name for n in self.store.notifications]

    def test_initial_state(self) -> None:
        self.assertEqual(self.coordinator.phase, RaffleState.ACCEPTING)
        self.assertEqual(self.coordinator.entrance_fee, 1)
        self.assertEqual(self.coordinator.interval, 3600)
        self.assertEqual(self.coordinator.window_start, 1_000)
        self.assertIsNone(self.coordinator.last_winner)
        self.assertEqual(self.coordinator.num_words, 1)
        self.assertEqual(self.coordinator.request_confirmations, 3)

    def test_rejects_invalid_configuration(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            self._make_coordinator(entrance_fee=0)
        with self.assertRaises(InvalidConfiguration):
            self._make_coordinator(interval_seconds=0)

    def test_enter_appends_in_call_order(self) -> None:
        self._enter_all(ALICE, BOB, ALICE)

        self.assertEqual(self.coordinator.entrant_count, 3)
        self.assertEqual(
            [self.coordinator.entrant(i) for i in range(3)], [ALICE, BOB, ALICE]
        )
        self.assertEqual(self.coordinator.balance, 3)
        self.assertEqual(self._notification_names(), ["EntrantAccepted"] * 3)
        self.assertEqual(self.store.notifications[1].args, {"player": BOB})

    def test_enter_checksums_address(self) -> None:
        self.coordinator.enter(ALICE.lower(), 1)
        self.assertEqual(self.coordinator.entrant(0), ALICE)

    def test_overpayment_is_held(self) -> None:
        self.coordinator.enter(ALICE, 5)
        self.assertEqual(self.coordinator.balance, 5)

    def test_underpayment_changes_nothing(self) -> None:
        coordinator = self._make_coordinator(entrance_fee=10)
        before = coordinator.snapshot()
        committed = len(self.store.notifications)

        for payment in (0, 1, 9):
            with self.assertRaises(InsufficientPayment) as ctx:
                coordinator.enter(ALICE, payment)
            self.assertEqual(ctx.exception.required, 10)

        self.assertEqual(coordinator.snapshot(), before)
        self.assertEqual(len(self.store.notifications), committed)

    def test_entrant_out_of_range(self) -> None:
        self._enter_all(ALICE)
        with self.assertRaises(EntrantNotFound):
            self.coordinator.entrant(1)
        with self.assertRaises(EntrantNotFound):
            self.coordinator.entrant(-1)

    def test_readiness_requires_elapsed_interval(self) -> None:
        self._enter_all(ALICE, BOB, CAROL)

        self.clock.now = 1_000 + 3599
        self.assertEqual(self.coordinator.evaluate_draw_readiness(), (False, b""))

        self.clock.now = 1_000 + 3600
        self.assertEqual(self.coordinator.evaluate_draw_readiness(), (True, b""))

    def test_readiness_requires_entrants(self) -> None:
        self.clock.now = 10_000
        upkeep_needed, _ = self.coordinator.evaluate_draw_readiness()
        self.assertFalse(upkeep_needed)

        with self.assertRaises(UpkeepNotNeeded) as ctx:
            self.coordinator.trigger_draw()
        self.assertEqual(ctx.exception.balance, 0)
        self.assertEqual(ctx.exception.entrant_count, 0)
        self.assertEqual(ctx.exception.phase, "ACCEPTING")

    def test_trigger_draw_closes_round(self) -> None:
        self._enter_all(ALICE, BOB)
        self.clock.now = 5_000

        request_id = self.coordinator.trigger_draw()

        self.assertEqual(request_id, 1)
        self.assertEqual(self.coordinator.phase, RaffleState.DRAWING)
        self.assertEqual(self.coordinator.outstanding_request_id, 1)
        self.assertEqual(self.store.notifications[-1].name, "DrawRequested")
        self.assertEqual(self.store.notifications[-1].args, {"request_id": 1})
        pending = self.vrf.pending_requests()
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0].consumer, RAFFLE_ADDRESS)
        self.assertEqual(pending[0].request_confirmations, 3)

        for payment in (0, 1, 100):
            with self.assertRaises(RoundClosed):
                self.coordinator.enter(CAROL, payment)
        self.assertEqual(self.coordinator.entrant_count, 2)

    def test_second_trigger_is_rejected(self) -> None:
        self._enter_all(ALICE)
        self.clock.now = 5_000
        self.coordinator.trigger_draw()

        with self.assertRaises(UpkeepNotNeeded) as ctx:
            self.coordinator.trigger_draw()
        self.assertEqual(ctx.exception.phase, "DRAWING")
        self.assertEqual(len(self.vrf.pending_requests()), 1)

    def test_failed_oracle_request_rolls_back(self) -> None:
        vrf = LocalVRFCoordinator(VRF_ADDRESS, clock=self.clock)
        subscription_id = vrf.create_subscription()
        coordinator = RaffleCoordinator(
            RaffleSettings(entrance_fee=1, interval_seconds=60, address=RAFFLE_ADDRESS),
            VRFSettings(subscription_id=subscription_id, coordinator_address=VRF_ADDRESS),
            oracle=vrf.client_for(RAFFLE_ADDRESS),
            ledger=self.ledger,
            clock=self.clock,
        )
        coordinator.enter(ALICE, 1)
        self.clock.now += 60

        with self.assertRaises(InvalidConsumer):
            coordinator.trigger_draw()
        self.assertEqual(coordinator.phase, RaffleState.ACCEPTING)
        self.assertIsNone(coordinator.outstanding_request_id)

    def test_full_round(self) -> None:
        self._enter_all(ALICE, BOB, CAROL)
        self.assertFalse(self.coordinator.evaluate_draw_readiness()[0])

        self.clock.now = 1_000 + 3600
        self.assertTrue(self.coordinator.evaluate_draw_readiness()[0])
        request_id = self.coordinator.trigger_draw()
        self.assertEqual(self.coordinator.phase, RaffleState.DRAWING)

        self.clock.now = 4_700
        winner = self.vrf.fulfill_random_words(request_id, [7])

        self.assertEqual(winner, BOB)
        self.assertEqual(self.coordinator.last_winner, BOB)
        self.assertEqual(self.ledger.balances, {BOB: 3})
        self.assertEqual(self.coordinator.balance, 0)
        self.assertEqual(self.coordinator.entrant_count, 0)
        self.assertEqual(self.coordinator.phase, RaffleState.ACCEPTING)
        self.assertEqual(self.coordinator.window_start, 4_700)
        self.assertIsNone(self.coordinator.outstanding_request_id)
        self.assertEqual(
            self._notification_names(),
            ["EntrantAccepted"] * 3 + ["DrawRequested", "WinnerChosen", "RoundReset"],
        )
        self.assertEqual(self.store.snapshot, self.coordinator.snapshot())

    def test_winner_selection_is_deterministic(self) -> None:
        players = [ALICE, BOB, CAROL, DAVE]
        for word in (0, 5, 2**255 + 3):
            with self.subTest(word=word):
                coordinator = self._make_coordinator()
                self.vrf.add_consumer(
                    self.subscription_id, RAFFLE_ADDRESS, coordinator.raw_fulfill_random_words
                )
                for player in players:
                    coordinator.enter(player, 1)
                self.clock.now += 3600
                request_id = coordinator.trigger_draw()
                winner = self.vrf.fulfill_random_words(request_id, [word])
                self.assertEqual(winner, players[word % len(players)])

    def test_derived_words_pick_winner(self) -> None:
        self._enter_all(ALICE, BOB, CAROL)
        self.clock.now += 3600
        request_id = self.coordinator.trigger_draw()

        winner = self.vrf.fulfill_random_words(request_id)

        expected = [ALICE, BOB, CAROL][derive_random_words(request_id, 1)[0] % 3]
        self.assertEqual(winner, expected)

    def test_mismatched_request_is_rejected(self) -> None:
        self._enter_all(ALICE)
        self.clock.now += 3600
        request_id = self.coordinator.trigger_draw()

        with self.assertRaises(RequestMismatch):
            self.coordinator.on_randomness_delivered(request_id + 1, [1])
        self.assertEqual(self.coordinator.phase, RaffleState.DRAWING)
        self.assertEqual(self.coordinator.entrant_count, 1)

    def test_delivery_without_pending_draw_is_rejected(self) -> None:
        with self.assertRaises(RequestMismatch):
            self.coordinator.on_randomness_delivered(1, [1])

    def test_only_oracle_can_deliver(self) -> None:
        self._enter_all(ALICE)
        self.clock.now += 3600
        request_id = self.coordinator.trigger_draw()

        with self.assertRaises(OnlyCoordinatorCanFulfill):
            self.coordinator.raw_fulfill_random_words(ALICE, request_id, [1])
        self.assertEqual(self.coordinator.phase, RaffleState.DRAWING)

    def test_duplicate_delivery_is_ignored(self) -> None:
        self._enter_all(ALICE, BOB)
        self.clock.now += 3600
        request_id = self.coordinator.trigger_draw()
        self.vrf.fulfill_random_words(request_id, [0])
        self.coordinator.enter(CAROL, 1)

        self.assertIsNone(
            self.coordinator.raw_fulfill_random_words(VRF_ADDRESS, request_id, [1])
        )
        with self.assertRaises(NonexistentRequest):
            self.vrf.fulfill_random_words(request_id, [1])
        self.assertEqual(self.coordinator.last_winner, ALICE)
        self.assertEqual(self.coordinator.entrant_count, 1)
        self.assertEqual(self.ledger.balances, {ALICE: 2})

    def test_failed_payout_keeps_round_reset(self) -> None:
        self.ledger.blocked.add(BOB)
        self._enter_all(ALICE, BOB, CAROL)
        self.clock.now += 3600
        request_id = self.coordinator.trigger_draw()

        with self.assertRaises(PayoutFailed) as ctx:
            self.vrf.fulfill_random_words(request_id, [7])

        self.assertEqual(ctx.exception.winner, BOB)
        self.assertEqual(ctx.exception.amount, 3)
        self.assertEqual(self.coordinator.phase, RaffleState.ACCEPTING)
        self.assertEqual(self.coordinator.entrant_count, 0)
        self.assertEqual(self.coordinator.last_winner, BOB)
        self.assertEqual(self.coordinator.balance, 3)
        self.assertEqual(self.ledger.transfers, [(BOB, 3, False)])

        # Stranded funds roll into the next prize.
        self.coordinator.enter(DAVE, 1)
        self.clock.now += 3600
        request_id = self.coordinator.trigger_draw()
        self.assertEqual(self.vrf.fulfill_random_words(request_id, [0]), DAVE)
        self.assertEqual(self.ledger.balances, {DAVE: 4})
        self.assertEqual(self.coordinator.balance, 0)

    def test_prize_is_drained_before_transfer(self) -> None:
        store = self.store

        class PayingLedger(InMemoryLedger):
            def transfer(self, recipient, amount):
                # Nothing may be committed once the winner has been paid.
                store.commit = mock.Mock(side_effect=RuntimeError("db down"))
                return super().transfer(recipient, amount)

        self.ledger = PayingLedger()
        coordinator = self._make_coordinator()
        coordinator.enter(ALICE, 1)
        coordinator.enter(BOB, 1)
        self.clock.now += 3600
        request_id = coordinator.trigger_draw()

        self.assertEqual(coordinator.on_randomness_delivered(request_id, [0]), ALICE)
        self.assertEqual(self.ledger.balances, {ALICE: 2})
        self.assertEqual(coordinator.balance, 0)
        self.assertEqual(store.snapshot.balance, 0)

    def test_failed_reset_commit_pays_nothing(self) -> None:
        self._enter_all(ALICE, BOB)
        self.clock.now += 3600
        request_id = self.coordinator.trigger_draw()

        with mock.patch.object(self.store, "commit", side_effect=RuntimeError("db down")):
            with self.assertRaises(RuntimeError):
                self.coordinator.on_randomness_delivered(request_id, [0])

        self.assertEqual(self.ledger.transfers, [])
        self.assertEqual(self.coordinator.phase, RaffleState.DRAWING)
        self.assertEqual(self.coordinator.balance, 2)

        # The same delivery can be retried once the store recovers.
        self.assertEqual(self.coordinator.on_randomness_delivered(request_id, [0]), ALICE)
        self.assertEqual(self.ledger.balances, {ALICE: 2})
        self.assertEqual(self.coordinator.balance, 0)

    def test_window_start_never_moves_backwards(self) -> None:
        self._enter_all(ALICE)
        self.clock.now = 1_000 + 3600
        request_id = self.coordinator.trigger_draw()

        self.clock.now = 500
        self.vrf.fulfill_random_words(request_id, [0])

        self.assertEqual(self.coordinator.window_start, 1_000)
        self.assertEqual(self.store.snapshot.window_start, 1_000)
        self.assertFalse(self.coordinator.evaluate_draw_readiness()[0])

    def test_failed_commit_leaves_state_untouched(self) -> None:
        class FailingStore(InMemoryRoundStore):
            fail = False

            def commit(self, state, notifications):
                if self.fail:
                    raise RuntimeError("disk full")
                super().commit(state, notifications)

        store = FailingStore()
        coordinator = RaffleCoordinator(
            RaffleSettings(entrance_fee=1, interval_seconds=60, address=RAFFLE_ADDRESS),
            VRFSettings(subscription_id=self.subscription_id, coordinator_address=VRF_ADDRESS),
            oracle=self.vrf.client_for(RAFFLE_ADDRESS),
            ledger=self.ledger,
            store=store,
            clock=self.clock,
        )
        store.fail = True

        with self.assertRaises(RuntimeError):
            coordinator.enter(ALICE, 1)
        self.assertEqual(coordinator.entrant_count, 0)
        self.assertEqual(coordinator.balance, 0)


if __name__ == "__main__":
    unittest.main()
