from __future__ import annotations

import asyncio
import json
import logging
import pathlib
from dataclasses import dataclass
from typing import Optional, Protocol

from .client import UpkeepRejected
from .config import KeeperSettings
from .types import RaffleSnapshot, UpkeepCheck


class RaffleClientProtocol(Protocol):
    async def get_snapshot(self) -> RaffleSnapshot:
        ...

    async def check_upkeep(self) -> UpkeepCheck:
        ...

    async def perform_upkeep(self, perform_data: str = "0x") -> int:
        ...

    def close(self) -> None:
        ...


@dataclass
class UpkeepResult:
    request_id: int
    perform_data: str


class KeeperStateStore:
    """Remembers the last randomness request this keeper triggered."""

    def __init__(self, path: str) -> None:
        self._path = pathlib.Path(path)

    def load_last_request(self) -> Optional[int]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        value = data.get("last_request_id")
        return int(value) if value is not None else None

    def save_last_request(self, request_id: int) -> None:
        payload = {"last_request_id": request_id}
        self._path.write_text(json.dumps(payload), encoding="utf-8")


class UpkeepScheduler:
    def __init__(
        self,
        settings: KeeperSettings,
        client: RaffleClientProtocol,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._state = KeeperStateStore(settings.state_file)
        self._last_request_id = self._state.load_last_request()
        self._logger = logger or logging.getLogger("chainraffle.keeper")

    @property
    def last_request_id(self) -> Optional[int]:
        return self._last_request_id

    async def run_forever(self) -> None:
        interval = self._settings.poll_interval_seconds
        self._logger.info("Keeper loop started; poll interval=%s", interval)
        try:
            while True:
                try:
                    result = await self._attempt_upkeep()
                    if result is not None and self._settings.run_once:
                        self._logger.info("Run-once flag set; exiting loop.")
                        return
                except Exception as exc:
                    self._logger.exception("Keeper iteration failed: %s", exc)
                await asyncio.sleep(interval)
        finally:
            self._client.close()

    async def run_once(self) -> Optional[UpkeepResult]:
        try:
            return await self._attempt_upkeep()
        finally:
            self._client.close()

    async def _attempt_upkeep(self) -> Optional[UpkeepResult]:
        check = await self._client.check_upkeep()
        if not check.upkeep_needed:
            if not self._logger.isEnabledFor(logging.DEBUG):
                return None
            snapshot = await self._client.get_snapshot()
            self._logger.debug(
                "Upkeep not needed (phase=%s, entrants=%s, balance=%s)",
                snapshot.phase.value,
                snapshot.entrant_count,
                snapshot.balance,
            )
            return None

        try:
            request_id = await self._client.perform_upkeep(check.perform_data)
        except UpkeepRejected as exc:
            # Another trigger won the race between our check and perform.
            self._logger.info("Upkeep rejected by coordinator: %s", exc.detail)
            return None

        self._logger.info("Draw triggered; randomness request %s", request_id)
        self._last_request_id = request_id
        self._state.save_last_request(request_id)
        return UpkeepResult(request_id=request_id, perform_data=check.perform_data)
