from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from ..db import session_scope
from ..models import LedgerAccount, Payout


class SqlLedger:
    """Settlement ledger: credits the recipient and records the payout atomically.

    ``transfer`` never raises for a rejected payment; it reports ``False`` and the
    failed attempt is still recorded in the payout history.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("chainraffle.ledger")

    def transfer(self, recipient: str, amount: int) -> bool:
        try:
            with session_scope() as session:
                account = self._ensure_account(session, recipient)
                succeeded = not account.blocked
                if succeeded:
                    account.balance = str(int(account.balance) + int(amount))
                session.add(Payout(recipient=recipient, amount=str(amount), succeeded=succeeded))
        except SQLAlchemyError as exc:
            self._logger.exception("Transfer of %s to %s failed: %s", amount, recipient, exc)
            return False
        return succeeded

    def balance_of(self, address: str) -> int:
        with session_scope() as session:
            account = session.get(LedgerAccount, address)
            return int(account.balance) if account else 0

    def set_blocked(self, address: str, blocked: bool = True) -> None:
        with session_scope() as session:
            account = self._ensure_account(session, address)
            account.blocked = blocked

    def list_payouts(self, limit: Optional[int] = None) -> List[Dict[str, object]]:
        with session_scope() as session:
            query = session.query(Payout).order_by(desc(Payout.id))
            if limit:
                query = query.limit(limit)
            return [payout.to_dict() for payout in query.all()]

    @staticmethod
    def _ensure_account(session, address: str) -> LedgerAccount:
        account = session.get(LedgerAccount, address)
        if account is None:
            account = LedgerAccount(address=address, balance="0", blocked=False)
            session.add(account)
            session.flush()
        return account


class InMemoryLedger:
    def __init__(self) -> None:
        self.balances: Dict[str, int] = {}
        self.blocked: Set[str] = set()
        self.transfers: List[Tuple[str, int, bool]] = []

    def transfer(self, recipient: str, amount: int) -> bool:
        succeeded = recipient not in self.blocked
        if succeeded:
            self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self.transfers.append((recipient, amount, succeeded))
        return succeeded
