from __future__ import annotations

import datetime as dt
import json
from typing import Any, Dict

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# uint256 values (wei amounts, request ids) exceed 64 bits and are stored as decimal text.
Uint256 = String(78)


class RoundStateRecord(Base):
    __tablename__ = "round_state"

    id = Column(Integer, primary_key=True, default=1)
    phase = Column(Integer, nullable=False, default=0)
    window_start = Column(BigInteger, nullable=False, default=0)
    last_winner = Column(String(42), nullable=True)
    outstanding_request_id = Column(Uint256, nullable=True)
    last_fulfilled_request_id = Column(Uint256, nullable=True)
    balance = Column(Uint256, nullable=False, default="0")
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)


class Entrant(Base):
    __tablename__ = "entrants"

    position = Column(Integer, primary_key=True, autoincrement=False)
    address = Column(String(42), nullable=False)


class NotificationRecord(Base):
    __tablename__ = "notifications"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(32), nullable=False)
    args = Column(Text, nullable=False, default="{}")
    emitted_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)

    def set_args(self, args: Dict[str, Any]) -> None:
        self.args = json.dumps(args)

    def get_args(self) -> Dict[str, Any]:
        return json.loads(self.args)

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "name": self.name,
            "args": self.get_args(),
            "emitted_at": self.emitted_at.isoformat(),
        }


class LedgerAccount(Base):
    __tablename__ = "ledger_accounts"

    address = Column(String(42), primary_key=True)
    balance = Column(Uint256, nullable=False, default="0")
    blocked = Column(Boolean, nullable=False, default=False)


class Payout(Base):
    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient = Column(String(42), nullable=False)
    amount = Column(Uint256, nullable=False)
    succeeded = Column(Boolean, nullable=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient": self.recipient,
            "amount": str(int(self.amount)),
            "succeeded": self.succeeded,
            "created_at": self.created_at.isoformat(),
        }
