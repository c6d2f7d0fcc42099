from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from ..config import AppSettings
from .coordinator import RaffleCoordinator
from .ledger import SqlLedger
from .store import SqlRoundStore
from .vrf import LocalVRFCoordinator


class RaffleRuntime:
    """Wires the coordinator to its persistent store, ledger and local oracle.

    ``lock`` serialises every call into the coordinator; the coordinator itself
    assumes one operation runs at a time.
    """

    def __init__(
        self,
        settings: AppSettings,
        clock: Optional[Callable[[], int]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self.lock = threading.RLock()
        self._logger = logger or logging.getLogger("chainraffle.runtime")

        self.store = SqlRoundStore()
        self.ledger = SqlLedger()
        state = self.store.load()

        known_ids = [0]
        if state is not None:
            known_ids += [
                rid
                for rid in (state.outstanding_request_id, state.last_fulfilled_request_id)
                if rid is not None
            ]
        self.vrf = LocalVRFCoordinator(
            settings.vrf.coordinator_address, clock=clock, next_request_id=max(known_ids) + 1
        )
        subscription_id = self.vrf.create_subscription(settings.vrf.subscription_id)
        self.vrf.fund_subscription(subscription_id, settings.vrf.subscription_fund)

        self.coordinator = RaffleCoordinator(
            settings.raffle,
            settings.vrf,
            oracle=self.vrf.client_for(settings.raffle.address),
            ledger=self.ledger,
            store=self.store,
            state=state,
            clock=clock,
        )
        self.vrf.add_consumer(
            subscription_id, settings.raffle.address, self.coordinator.raw_fulfill_random_words
        )

        if state is not None and state.outstanding_request_id is not None:
            # The oracle keeps requests in memory only; re-issue the one the round waits on.
            self.vrf.restore_request(
                state.outstanding_request_id,
                settings.raffle.address,
                settings.vrf.gas_lane,
                subscription_id,
                settings.vrf.request_confirmations,
                settings.vrf.callback_gas_limit,
                settings.vrf.num_words,
            )
            self._logger.info(
                "Restored round is drawing; waiting on request %s", state.outstanding_request_id
            )
