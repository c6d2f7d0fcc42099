from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from web3 import Web3

from ..config import load_settings
from ..exceptions import PayoutFailed
from ..schemas import FulfillRequest, FulfillResponse
from .raffle import get_runtime

bp = Blueprint("admin", __name__)


def _require_admin() -> bool:
    settings = load_settings()
    api_key = settings.admin_api_key
    if api_key:
        provided = request.headers.get("X-Admin-Token")
        if provided != api_key:
            return False
    return True


@bp.before_request
def verify_admin():
    if not _require_admin():
        return jsonify({"error": "unauthorized"}), 401
    return None


@bp.get("/vrf/requests")
def list_requests():
    runtime = get_runtime()
    with runtime.lock:
        pending = [req.to_dict() for req in runtime.vrf.pending_requests()]
    return jsonify(pending)


@bp.post("/vrf/requests/<int:request_id>/fulfill")
def fulfill_request(request_id: int):
    payload = request.get_json(force=True, silent=True) or {}
    data = FulfillRequest(**payload)

    runtime = get_runtime()
    with runtime.lock:
        try:
            winner = runtime.vrf.fulfill_random_words(request_id, data.random_words)
        except PayoutFailed as exc:
            current_app.logger.error("Request %s fulfilled but payout failed: %s", request_id, exc)
            raise

    response = FulfillResponse(request_id=request_id, winner=winner)
    return jsonify(response.dict())


@bp.post("/ledger/<address>/block")
def block_account(address: str):
    if not Web3.is_address(address):
        return jsonify({"error": "invalid address"}), 400
    payload = request.get_json(force=True, silent=True) or {}
    blocked = bool(payload.get("blocked", True))
    checksummed = Web3.to_checksum_address(address)
    runtime = get_runtime()
    with runtime.lock:
        runtime.ledger.set_blocked(checksummed, blocked)
    return jsonify({"address": checksummed, "blocked": blocked})
