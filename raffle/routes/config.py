from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, jsonify
from web3 import Web3

from ..config import load_settings

bp = Blueprint("config", __name__)


def _get_raffle_metadata() -> Dict[str, Any]:
    settings = load_settings()
    fee = settings.raffle.entrance_fee
    return {
        "coordinator_address": settings.raffle.address,
        "entrance_fee_wei": str(fee),
        "entrance_fee_ether": str(Web3.from_wei(fee, "ether")),
        "interval_seconds": settings.raffle.interval_seconds,
        "vrf": {
            "coordinator_address": settings.vrf.coordinator_address,
            "gas_lane": settings.vrf.gas_lane,
            "subscription_id": settings.vrf.subscription_id,
            "callback_gas_limit": settings.vrf.callback_gas_limit,
            "request_confirmations": settings.vrf.request_confirmations,
            "num_words": settings.vrf.num_words,
        },
    }


@bp.get("/config")
def get_config():
    return jsonify(_get_raffle_metadata())
