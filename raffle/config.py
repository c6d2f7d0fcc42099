from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from web3 import Web3

from .exceptions import InvalidConfiguration

DEFAULT_GAS_LANE = "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c"
DEFAULT_COORDINATOR_ADDRESS = "0x" + "0" * 39 + "1"
DEFAULT_VRF_COORDINATOR_ADDRESS = "0x" + "0" * 39 + "2"


@dataclass(frozen=True)
class FlaskSettings:
    secret_key: str = "chainraffle-dev-secret"
    debug: bool = True


@dataclass(frozen=True)
class VRFSettings:
    gas_lane: str = DEFAULT_GAS_LANE
    subscription_id: int = 1
    callback_gas_limit: int = 500000
    request_confirmations: int = 3
    num_words: int = 1
    subscription_fund: int = 10**18
    coordinator_address: str = DEFAULT_VRF_COORDINATOR_ADDRESS


@dataclass(frozen=True)
class RaffleSettings:
    entrance_fee: int
    interval_seconds: int
    address: str = DEFAULT_COORDINATOR_ADDRESS


@dataclass(frozen=True)
class AppSettings:
    flask: FlaskSettings
    raffle: RaffleSettings
    vrf: VRFSettings
    database_url: str
    admin_api_key: Optional[str]


def _int_from_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise InvalidConfiguration(f"{key} must be an integer, got {value!r}") from exc


def _address_from_env(key: str, default: str) -> str:
    value = os.getenv(key) or default
    if not Web3.is_address(value):
        raise InvalidConfiguration(f"{key} is not a valid address: {value!r}")
    return Web3.to_checksum_address(value)


def parse_entrance_fee(raw: Optional[str], unit: str = "wei") -> int:
    """Convert a configured fee into wei; ``unit`` is any web3 denomination."""
    if raw is None or raw == "":
        raw = "0.01"
        unit = "ether"
    try:
        return int(Web3.to_wei(Decimal(raw), unit))
    except (ArithmeticError, ValueError) as exc:
        raise InvalidConfiguration(f"Invalid entrance fee {raw!r} ({unit})") from exc


def validate_settings(raffle: RaffleSettings, vrf: VRFSettings) -> None:
    if raffle.entrance_fee <= 0:
        raise InvalidConfiguration("Entrance fee must be positive.")
    if raffle.interval_seconds <= 0:
        raise InvalidConfiguration("Draw interval must be positive.")
    if vrf.num_words < 1:
        raise InvalidConfiguration("At least one random word must be requested.")
    if vrf.request_confirmations < 0 or vrf.callback_gas_limit <= 0:
        raise InvalidConfiguration("Invalid randomness request parameters.")


@lru_cache(maxsize=1)
def load_settings(dotenv_path: Optional[str] = None) -> AppSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        load_dotenv()

    flask_settings = FlaskSettings(
        secret_key=os.getenv("FLASK_SECRET_KEY", "chainraffle-dev-secret"),
        debug=os.getenv("FLASK_DEBUG", "1") == "1",
    )

    raffle_settings = RaffleSettings(
        entrance_fee=parse_entrance_fee(
            os.getenv("ENTRANCE_FEE"), os.getenv("ENTRANCE_FEE_UNIT", "wei")
        ),
        interval_seconds=_int_from_env("DRAW_INTERVAL_SECONDS", 30),
        address=_address_from_env("COORDINATOR_ADDRESS", DEFAULT_COORDINATOR_ADDRESS),
    )

    vrf_settings = VRFSettings(
        gas_lane=os.getenv("VRF_GAS_LANE", DEFAULT_GAS_LANE),
        subscription_id=_int_from_env("VRF_SUBSCRIPTION_ID", 1),
        callback_gas_limit=_int_from_env("VRF_CALLBACK_GAS_LIMIT", 500000),
        request_confirmations=_int_from_env("VRF_REQUEST_CONFIRMATIONS", 3),
        num_words=_int_from_env("VRF_NUM_WORDS", 1),
        subscription_fund=_int_from_env("VRF_SUBSCRIPTION_FUND", 10**18),
        coordinator_address=_address_from_env(
            "VRF_COORDINATOR_ADDRESS", DEFAULT_VRF_COORDINATOR_ADDRESS
        ),
    )
    validate_settings(raffle_settings, vrf_settings)

    return AppSettings(
        flask=flask_settings,
        raffle=raffle_settings,
        vrf=vrf_settings,
        database_url=os.getenv("DATABASE_URL", "sqlite:///chainraffle.db"),
        admin_api_key=os.getenv("ADMIN_API_KEY"),
    )
