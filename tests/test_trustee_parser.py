"""Tests for the Trustee statement parser."""

from datetime import datetime
from decimal import Decimal

from ledgerflow.parsers.trustee_parser import TrusteeStatementParser
from ledgerflow.schemas.transaction import TransactionType

HEADER = "Date and time of operation\n"
FOOTER = "The document is electronically generated\n"


class TestTrusteeStatementParser:
    """Tests for row parsing."""

    def test_parse_sample(self, sample_trustee_text):
        report = TrusteeStatementParser().parse_report(sample_trustee_text)

        assert len(report.transactions) == 2
        shop, top_up = report.transactions

        assert shop.date == datetime(2025, 11, 1, 15, 41)
        assert shop.description == "147 VELMART 31 KIEV UKR"
        assert shop.amount == Decimal("2.18")
        assert shop.currency == "EUR"
        assert shop.type == TransactionType.EXPENSE

        assert top_up.description == "TOP UP FROM CARD WALLET"
        assert top_up.amount == Decimal("100.00")
        assert top_up.type == TransactionType.INCOME

    def test_metadata(self, sample_trustee_text):
        report = TrusteeStatementParser().parse_report(sample_trustee_text)

        assert report.metadata["period"] == "2025.11.01 - 2025.11.30"
        assert report.metadata["card_number"] == "****1234"
        assert report.source == "trustee"

    def test_rows_before_section_ignored(self):
        text = "2025.11.01, 15:41EARLY ROW -1.00 EUR\n" + HEADER + "2025.11.02, 10:00SHOP -5.00 EUR\n"
        transactions = TrusteeStatementParser().parse(text)

        assert [t.description for t in transactions] == ["SHOP"]

    def test_footer_stops_parsing(self):
        text = HEADER + "2025.11.02, 10:00SHOP -5.00 EUR\n" + FOOTER + "2025.11.03, 10:00LATE -1.00 EUR\n"
        transactions = TrusteeStatementParser().parse(text)

        assert [t.description for t in transactions] == ["SHOP"]

    def test_wrapped_row_without_amount_skipped(self):
        text = HEADER + "2025.11.02, 10:00DANGLING\n2025.11.03, 11:00SHOP -5.00 EUR\n"
        report = TrusteeStatementParser().parse_report(text)

        assert [t.description for t in report.transactions] == ["SHOP"]
        assert report.skipped == 1

    def test_invalid_date_skipped(self):
        text = HEADER + "2025.13.40, 10:00BAD -5.00 EUR\n2025.11.03, 11:00GOOD -1.00 EUR\n"
        report = TrusteeStatementParser().parse_report(text)

        assert [t.description for t in report.transactions] == ["GOOD"]
        assert report.skipped == 1

    def test_positive_amount_is_income(self):
        text = HEADER + "2025.11.02, 10:00REFUND 12.5 USD\n"
        txn = TrusteeStatementParser().parse(text)[0]

        assert txn.type == TransactionType.INCOME
        assert txn.amount == Decimal("12.5")
        assert txn.currency == "USD"
