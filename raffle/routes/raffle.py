from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..schemas import (
    EntryRequest,
    EntryResponse,
    RaffleSummaryResponse,
    UpkeepCheckResponse,
    UpkeepPerformRequest,
    UpkeepPerformResponse,
)
from ..services.runtime import RaffleRuntime

bp = Blueprint("raffle", __name__)


def get_runtime() -> RaffleRuntime:
    return current_app.extensions["chainraffle"]


@bp.get("")
def get_summary():
    runtime = get_runtime()
    with runtime.lock:
        coordinator = runtime.coordinator
        response = RaffleSummaryResponse(
            phase=coordinator.phase.name,
            entrance_fee=str(coordinator.entrance_fee),
            interval_seconds=coordinator.interval,
            window_start=coordinator.window_start,
            entrant_count=coordinator.entrant_count,
            balance=str(coordinator.balance),
            last_winner=coordinator.last_winner,
            outstanding_request_id=coordinator.outstanding_request_id,
        )
    return jsonify(response.dict())


@bp.get("/entrants/<int:index>")
def get_entrant(index: int):
    runtime = get_runtime()
    with runtime.lock:
        address = runtime.coordinator.entrant(index)
    return jsonify({"index": index, "address": address})


@bp.post("/entries")
def enter():
    payload = request.get_json(force=True, silent=True) or {}
    data = EntryRequest(**payload)

    runtime = get_runtime()
    with runtime.lock:
        runtime.coordinator.enter(data.address, data.amount)
        count = runtime.coordinator.entrant_count

    response = EntryResponse(address=data.address, entrant_index=count - 1, entrant_count=count)
    return jsonify(response.dict()), 201


@bp.get("/upkeep")
def check_upkeep():
    runtime = get_runtime()
    with runtime.lock:
        upkeep_needed, perform_data = runtime.coordinator.evaluate_draw_readiness()
    response = UpkeepCheckResponse(upkeep_needed=upkeep_needed, perform_data="0x" + perform_data.hex())
    return jsonify(response.dict())


@bp.post("/upkeep")
def perform_upkeep():
    payload = request.get_json(force=True, silent=True) or {}
    data = UpkeepPerformRequest(**payload)

    runtime = get_runtime()
    with runtime.lock:
        request_id = runtime.coordinator.trigger_draw(data.perform_data.encode("utf-8"))
    current_app.logger.info("Upkeep performed; randomness request %s", request_id)
    return jsonify(UpkeepPerformResponse(request_id=request_id).dict())


@bp.get("/events")
def list_events():
    after = request.args.get("after", default=0, type=int)
    limit = request.args.get("limit", default=None, type=int)
    runtime = get_runtime()
    with runtime.lock:
        events = runtime.store.list_notifications(after=after, limit=limit)
    return jsonify(events)


@bp.get("/payouts")
def list_payouts():
    limit = request.args.get("limit", default=None, type=int)
    runtime = get_runtime()
    with runtime.lock:
        payouts = runtime.ledger.list_payouts(limit=limit)
    return jsonify(payouts)
