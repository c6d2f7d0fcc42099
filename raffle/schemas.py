from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, validator
from web3 import Web3


class EntryRequest(BaseModel):
    address: str = Field(..., description="Entrant address (0x-prefixed, 20 bytes).")
    amount: int = Field(..., description="Attached payment in wei.")

    @validator("address")
    def validate_address(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError("Invalid address.")
        return Web3.to_checksum_address(value)

    @validator("amount")
    def validate_amount(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Payment cannot be negative.")
        return value


class EntryResponse(BaseModel):
    address: str
    entrant_index: int
    entrant_count: int


class RaffleSummaryResponse(BaseModel):
    phase: str
    entrance_fee: str
    interval_seconds: int
    window_start: int
    entrant_count: int
    balance: str
    last_winner: Optional[str] = None
    outstanding_request_id: Optional[int] = None


class UpkeepCheckResponse(BaseModel):
    upkeep_needed: bool
    perform_data: str = "0x"


class UpkeepPerformRequest(BaseModel):
    perform_data: str = Field("0x", description="Opaque payload; ignored by the coordinator.")


class UpkeepPerformResponse(BaseModel):
    request_id: int


class FulfillRequest(BaseModel):
    random_words: Optional[List[int]] = Field(
        None, description="Override words; derived from the request id when omitted."
    )

    @validator("random_words")
    def validate_words(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return value
        if len(value) == 0:
            raise ValueError("random_words cannot be empty.")
        for word in value:
            if not 0 <= word < 2**256:
                raise ValueError("Random words must be uint256 values.")
        return value


class FulfillResponse(BaseModel):
    request_id: int
    winner: Optional[str] = None
