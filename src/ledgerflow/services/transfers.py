"""Transfer reconciliation.

Pairs "Transfer Out" and "Transfer In" transactions that share a pair_id and
measures what each transfer cost in the user's base currency.

Each side is valued with the exchange rate recorded on the transaction when
it was created; only transactions without a recorded rate fall back to a live
conversion. Unpaired transfers are reported, never matched heuristically.

Linking and unlinking touch two transactions. The second write is guarded by
a compensating write on the first, so a failure never leaves a pair_id on
only one side.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ..schemas.transaction import LedgerTransaction, SystemCategory
from ..state_store.sqlite_store import LedgerStoreError

if TYPE_CHECKING:
    from ..currency.converter import CurrencyConverter
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Store failures that trigger compensation
WRITE_ERRORS = (LedgerStoreError, sqlite3.Error)


class TransferError(Exception):
    """Base error for transfer operations."""


class TransferLinkError(TransferError):
    """A link or unlink request is invalid (missing, foreign, wrong category, already linked)."""


class LinkConsistencyError(TransferError):
    """
    The second half of a link/unlink failed.

    `compensated` tells whether the first half was restored. When False, the
    two transactions are left asymmetric and need manual repair.
    """

    def __init__(
        self,
        message: str,
        out_id: int,
        in_id: int,
        compensated: bool,
        compensation_error: Exception | None = None,
    ):
        self.out_id = out_id
        self.in_id = in_id
        self.compensated = compensated
        self.compensation_error = compensation_error
        super().__init__(message)


@dataclass
class TransferPair:
    """Derived view of one linked transfer, in base currency."""

    out_txn: LedgerTransaction
    in_txn: LedgerTransaction
    sent_amount: Decimal
    sent_currency: str
    received_amount: Decimal
    received_currency: str
    sent_base: Decimal
    received_base: Decimal
    fee_base: Decimal
    diff: Decimal  # received - sent - fee; negative is a loss
    diff_pct: Decimal
    actual_rate: Decimal  # received per 1 sent, 0 for same currency
    market_rate: Decimal  # from recorded rates, 0 when unknown
    date: datetime

    @property
    def pair_id(self) -> str | None:
        return self.out_txn.pair_id

    @property
    def currency_pair(self) -> str:
        return f"{self.sent_currency} → {self.received_currency}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "pair_id": self.pair_id,
            "out_id": self.out_txn.id,
            "in_id": self.in_txn.id,
            "date": self.date.isoformat(),
            "sent": f"{self.sent_amount} {self.sent_currency}",
            "received": f"{self.received_amount} {self.received_currency}",
            "sent_base": str(self.sent_base),
            "received_base": str(self.received_base),
            "fee_base": str(self.fee_base),
            "diff": str(self.diff),
            "diff_pct": str(self.diff_pct),
            "actual_rate": str(self.actual_rate),
            "market_rate": str(self.market_rate),
        }


@dataclass
class PairingResult:
    pairs: list[tuple[LedgerTransaction, LedgerTransaction]] = field(default_factory=list)
    unlinked_out: list[LedgerTransaction] = field(default_factory=list)
    unlinked_in: list[LedgerTransaction] = field(default_factory=list)


@dataclass
class CurrencyPairStat:
    pair: str  # "USD → EUR"
    total: Decimal = ZERO
    count: int = 0


@dataclass
class TransferSummary:
    """Aggregates over all linked pairs."""

    total_diff: Decimal = ZERO
    total_sent_base: Decimal = ZERO
    loss_percent: Decimal = ZERO
    by_currency_pair: list[CurrencyPairStat] = field(default_factory=list)
    cumulative: list[tuple[datetime, Decimal]] = field(default_factory=list)
    best: TransferPair | None = None
    worst: TransferPair | None = None


@dataclass
class TransferReport:
    base_currency: str
    pairs: list[TransferPair] = field(default_factory=list)
    unlinked_out: list[LedgerTransaction] = field(default_factory=list)
    unlinked_in: list[LedgerTransaction] = field(default_factory=list)
    summary: TransferSummary = field(default_factory=TransferSummary)


def summarize_pairs(pairs: list[TransferPair]) -> TransferSummary:
    """
    Build the summary for pairs already sorted by date.

    Same-currency pairs count toward the totals but not toward
    `by_currency_pair`. On equal diff_pct the later pair becomes best/worst.
    """
    summary = TransferSummary()
    by_pair: dict[str, CurrencyPairStat] = {}
    running = ZERO

    for pair in pairs:
        summary.total_diff += pair.diff
        summary.total_sent_base += pair.sent_base

        running += pair.diff
        summary.cumulative.append((pair.date, running))

        if pair.sent_currency != pair.received_currency:
            stat = by_pair.setdefault(pair.currency_pair, CurrencyPairStat(pair.currency_pair))
            stat.total += pair.diff
            stat.count += 1

        if summary.best is None or not summary.best.diff_pct > pair.diff_pct:
            summary.best = pair
        if summary.worst is None or not summary.worst.diff_pct < pair.diff_pct:
            summary.worst = pair

    if summary.total_sent_base > 0:
        summary.loss_percent = summary.total_diff / summary.total_sent_base * 100

    summary.by_currency_pair = sorted(by_pair.values(), key=lambda s: s.total)
    return summary


class TransferReconciler:
    """
    Pairs, values and links transfer transactions of one ledger.

    Usage:
        reconciler = TransferReconciler(store, converter, base_currency="EUR")
        report = reconciler.reconcile(user_id)
    """

    def __init__(
        self,
        store: LedgerStore,
        converter: CurrencyConverter | None = None,
        base_currency: str = "USD",
    ):
        self.store = store
        self.converter = converter
        self.base_currency = base_currency

    # Pairing

    def _transfer_category_ids(self, user_id: str) -> tuple[set[int], set[int]]:
        out_ids: set[int] = set()
        in_ids: set[int] = set()
        for category in self.store.list_categories(user_id):
            if category.name == SystemCategory.TRANSFER_OUT.value:
                out_ids.add(category.id)
            elif category.name == SystemCategory.TRANSFER_IN.value:
                in_ids.add(category.id)
        return out_ids, in_ids

    def find_pairs(self, user_id: str) -> PairingResult:
        """Group transfer transactions by pair_id; everything else is unlinked."""
        out_ids, in_ids = self._transfer_category_ids(user_id)
        if not out_ids and not in_ids:
            return PairingResult()

        transactions = self.store.get_transactions(user_id, category_ids=sorted(out_ids | in_ids))
        outs = [t for t in transactions if t.category_id in out_ids]
        ins = [t for t in transactions if t.category_id in in_ids]

        by_pair_id: dict[str, dict[str, LedgerTransaction]] = {}
        for txn in outs:
            if txn.pair_id:
                by_pair_id.setdefault(txn.pair_id, {})["out"] = txn
        for txn in ins:
            if txn.pair_id:
                by_pair_id.setdefault(txn.pair_id, {})["in"] = txn

        result = PairingResult()
        used: set[int] = set()
        for entry in by_pair_id.values():
            if "out" in entry and "in" in entry:
                result.pairs.append((entry["out"], entry["in"]))
                used.add(entry["out"].id)
                used.add(entry["in"].id)

        result.unlinked_out = [t for t in outs if t.id not in used]
        result.unlinked_in = [t for t in ins if t.id not in used]
        return result

    # Valuation

    def _to_base(self, amount: Decimal, txn: LedgerTransaction) -> Decimal:
        """Value an amount in `txn.currency` using the recorded rate when present."""
        if txn.exchange_rate is not None:
            return amount * txn.exchange_rate
        if txn.currency == self.base_currency:
            return amount
        if self.converter is None:
            raise TransferError(
                f"Transaction {txn.id} has no recorded rate and no converter is configured"
            )
        return self.converter.convert(amount, txn.currency, self.base_currency)

    def compute_pair(self, out_txn: LedgerTransaction, in_txn: LedgerTransaction) -> TransferPair:
        """Value one linked pair. The fee is in the sent currency."""
        sent_base = self._to_base(out_txn.amount, out_txn)
        received_base = self._to_base(in_txn.amount, in_txn)
        fee_base = self._to_base(out_txn.fee, out_txn) if out_txn.fee else ZERO

        diff = received_base - sent_base - fee_base
        diff_pct = diff / sent_base * 100 if sent_base != 0 else ZERO

        different = out_txn.currency != in_txn.currency
        actual_rate = in_txn.amount / out_txn.amount if different and out_txn.amount != 0 else ZERO

        market_rate = ZERO
        if (
            different
            and out_txn.exchange_rate is not None
            and in_txn.exchange_rate is not None
            and in_txn.exchange_rate > 0
        ):
            market_rate = out_txn.exchange_rate / in_txn.exchange_rate

        return TransferPair(
            out_txn=out_txn,
            in_txn=in_txn,
            sent_amount=out_txn.amount,
            sent_currency=out_txn.currency,
            received_amount=in_txn.amount,
            received_currency=in_txn.currency,
            sent_base=sent_base,
            received_base=received_base,
            fee_base=fee_base,
            diff=diff,
            diff_pct=diff_pct,
            actual_rate=actual_rate,
            market_rate=market_rate,
            date=out_txn.date,
        )

    def reconcile(self, user_id: str) -> TransferReport:
        """Pair, value and summarize all transfers of a user."""
        pairing = self.find_pairs(user_id)
        pairs = [self.compute_pair(out_txn, in_txn) for out_txn, in_txn in pairing.pairs]
        pairs.sort(key=lambda p: p.date)

        report = TransferReport(
            base_currency=self.base_currency,
            pairs=pairs,
            unlinked_out=pairing.unlinked_out,
            unlinked_in=pairing.unlinked_in,
            summary=summarize_pairs(pairs),
        )
        logger.info(
            f"Transfers for {user_id}: {len(pairs)} pairs, "
            f"{len(report.unlinked_out)} unlinked out, {len(report.unlinked_in)} unlinked in"
        )
        return report

    # Linking

    def _load_pair(
        self, user_id: str, out_id: int, in_id: int
    ) -> tuple[LedgerTransaction, LedgerTransaction]:
        if out_id == in_id:
            raise TransferLinkError("A transaction cannot be linked to itself")

        out_txn = self.store.get_transaction(user_id, out_id)
        in_txn = self.store.get_transaction(user_id, in_id)
        if out_txn is None:
            raise TransferLinkError(f"Transaction {out_id} not found")
        if in_txn is None:
            raise TransferLinkError(f"Transaction {in_id} not found")

        out_ids, in_ids = self._transfer_category_ids(user_id)
        if out_txn.category_id not in out_ids:
            raise TransferLinkError(f"Transaction {out_id} is not a Transfer Out")
        if in_txn.category_id not in in_ids:
            raise TransferLinkError(f"Transaction {in_id} is not a Transfer In")
        return out_txn, in_txn

    def _write_pair_ids(
        self,
        user_id: str,
        out_txn: LedgerTransaction,
        in_txn: LedgerTransaction,
        pair_id: str | None,
        action: str,
    ) -> None:
        """Set pair_id on both sides, restoring the out side if the in side fails."""
        self.store.update_transaction(user_id, out_txn.id, {"pair_id": pair_id})
        try:
            self.store.update_transaction(user_id, in_txn.id, {"pair_id": pair_id})
        except WRITE_ERRORS as e:
            logger.error(f"{action} of {out_txn.id}/{in_txn.id} failed on second write: {e}")
            try:
                self.store.update_transaction(user_id, out_txn.id, {"pair_id": out_txn.pair_id})
            except WRITE_ERRORS as restore_error:
                logger.error(
                    f"Could not restore pair_id on {out_txn.id}, pair is inconsistent: {restore_error}"
                )
                raise LinkConsistencyError(
                    f"{action} failed and transaction {out_txn.id} could not be restored",
                    out_txn.id,
                    in_txn.id,
                    compensated=False,
                    compensation_error=restore_error,
                ) from e
            raise LinkConsistencyError(
                f"{action} failed; transaction {out_txn.id} was restored",
                out_txn.id,
                in_txn.id,
                compensated=True,
            ) from e

    def link(self, user_id: str, out_id: int, in_id: int) -> str:
        """
        Link a Transfer Out with a Transfer In.

        Returns:
            The new pair_id

        Raises:
            TransferLinkError: If the request is invalid
            LinkConsistencyError: If the second write failed
        """
        out_txn, in_txn = self._load_pair(user_id, out_id, in_id)
        if out_txn.pair_id or in_txn.pair_id:
            raise TransferLinkError(f"Transaction {out_id} or {in_id} is already linked")

        pair_id = str(uuid.uuid4())
        self._write_pair_ids(user_id, out_txn, in_txn, pair_id, "Link")
        logger.info(f"Linked transfer {out_id} -> {in_id} as {pair_id}")
        return pair_id

    def unlink(self, user_id: str, out_id: int, in_id: int) -> None:
        """
        Remove the link between two paired transfers.

        Raises:
            TransferLinkError: If the two transactions are not paired together
            LinkConsistencyError: If the second write failed
        """
        out_txn, in_txn = self._load_pair(user_id, out_id, in_id)
        if not out_txn.pair_id or out_txn.pair_id != in_txn.pair_id:
            raise TransferLinkError(f"Transactions {out_id} and {in_id} are not linked together")

        self._write_pair_ids(user_id, out_txn, in_txn, None, "Unlink")
        logger.info(f"Unlinked transfer {out_id} -> {in_id}")
