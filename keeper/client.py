from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

import requests

from .config import KeeperSettings
from .types import RafflePhase, RaffleSnapshot, UpkeepCheck


class UpkeepRejected(RuntimeError):
    """The coordinator refused to start a draw (readiness changed under us)."""

    def __init__(self, detail: Mapping[str, Any]) -> None:
        self.detail = dict(detail)
        super().__init__(detail.get("message", "upkeep rejected"))


class RaffleClient:
    """HTTP wrapper around the coordinator's upkeep endpoints."""

    def __init__(self, settings: KeeperSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    async def get_snapshot(self) -> RaffleSnapshot:
        return await asyncio.to_thread(self._sync_get_snapshot)

    async def check_upkeep(self) -> UpkeepCheck:
        data = await asyncio.to_thread(self._get_json, "/raffle/upkeep")
        return UpkeepCheck(
            upkeep_needed=bool(data["upkeep_needed"]),
            perform_data=str(data.get("perform_data", "0x")),
        )

    async def perform_upkeep(self, perform_data: str = "0x") -> int:
        return await asyncio.to_thread(self._sync_perform_upkeep, perform_data)

    def close(self) -> None:
        self._session.close()

    def _sync_get_snapshot(self) -> RaffleSnapshot:
        data = self._get_json("/raffle")
        outstanding = data.get("outstanding_request_id")
        return RaffleSnapshot(
            phase=RafflePhase(data["phase"]),
            entrant_count=int(data["entrant_count"]),
            balance=int(data["balance"]),
            window_start=int(data["window_start"]),
            outstanding_request_id=int(outstanding) if outstanding is not None else None,
        )

    def _sync_perform_upkeep(self, perform_data: str) -> int:
        resp = self._session.post(
            self._url("/raffle/upkeep"),
            json={"perform_data": perform_data},
            timeout=self._settings.http_timeout_seconds,
        )
        if resp.status_code == 409:
            raise UpkeepRejected(resp.json())
        resp.raise_for_status()
        return int(resp.json()["request_id"])

    def _get_json(self, path: str) -> Dict[str, Any]:
        resp = self._session.get(self._url(path), timeout=self._settings.http_timeout_seconds)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Coordinator returned non-object payload for {path}")
        return data

    def _url(self, path: str) -> str:
        return f"{self._settings.coordinator_url}{path}"
