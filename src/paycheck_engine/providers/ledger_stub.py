"""In-memory ledger provider for local development and testing.

Replace with the wallet service client for production.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from decimal import Decimal

from paycheck_engine.providers.base import DisbursementError, LedgerTransaction

logger = logging.getLogger(__name__)


class LedgerStubProvider:
    """Stub ledger that records credits in memory.

    Wallets listed in failing_wallets refuse every credit, which lets tests
    exercise the disbursement failure path.
    """

    provider_name = "ledger_stub"

    def __init__(self, failing_wallets: set[str] | None = None):
        self.failing_wallets = set(failing_wallets or ())
        self.transactions: list[LedgerTransaction] = []

    async def credit(self, wallet_id: str, amount: Decimal, memo: str) -> LedgerTransaction:
        """Credit a wallet (stub implementation)."""
        if not wallet_id:
            raise DisbursementError(wallet_id, amount, "no wallet on file")
        if amount <= 0:
            raise DisbursementError(wallet_id, amount, "amount must be positive")
        if wallet_id in self.failing_wallets:
            raise DisbursementError(wallet_id, amount, "wallet rejected credit")

        transaction = LedgerTransaction(
            transaction_id=f"LEDGERSTUB-{uuid.uuid4().hex[:12].upper()}",
            wallet_id=wallet_id,
            amount=amount,
            memo=memo,
            created_at=datetime.datetime.now(datetime.timezone.utc),
        )
        self.transactions.append(transaction)
        logger.debug("Stub credit %s to %s", amount, wallet_id)
        return transaction

    def balance(self, wallet_id: str) -> Decimal:
        return sum(
            (t.amount for t in self.transactions if t.wallet_id == wallet_id),
            Decimal("0"),
        )
