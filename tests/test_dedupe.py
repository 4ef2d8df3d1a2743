"""Tests for dedupe module - content hash generation."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledgerflow.schemas.dedupe import (
    DateComponents,
    compute_content_hash,
    compute_qif_hash,
    extract_date_components,
    format_amount,
    format_date_for_hash,
    is_qif_hash,
    paired_hash,
    rolling_hash,
)


class TestRollingHash:
    """Tests for the 32-bit polynomial string hash."""

    def test_empty_string(self):
        assert rolling_hash("") == 0

    def test_known_values(self):
        """Matches the classic h * 31 + c string hash."""
        assert rolling_hash("a") == 97
        assert rolling_hash("ab") == 97 * 31 + 98
        assert rolling_hash("hello") == 99162322

    def test_stays_in_signed_32_bit_range(self):
        value = rolling_hash("2024-03-15 09:10-A VERY LONG MERCHANT DESCRIPTION-120.5-UAH")
        assert -(2**31) <= value < 2**31

    def test_non_ascii_text(self):
        """Cyrillic descriptions hash by UTF-16 code unit."""
        assert rolling_hash("Ф") == ord("Ф")


class TestFormatAmount:
    """Tests for shortest-form amount rendering."""

    def test_trailing_zeros_dropped(self):
        assert format_amount(Decimal("42.50")) == "42.5"
        assert format_amount(Decimal("100.00")) == "100"

    def test_zero(self):
        assert format_amount(Decimal("0.00")) == "0"

    def test_string_with_comma(self):
        assert format_amount("1,5") == "1.5"

    def test_float(self):
        assert format_amount(0.1) == "0.1"

    def test_invalid_type(self):
        with pytest.raises(ValueError):
            format_amount([1])


class TestDateComponents:
    """Tests for local wall-clock date handling."""

    def test_extract(self):
        components = extract_date_components(datetime(2024, 3, 5, 7, 9, 59))
        assert components == DateComponents(2024, 3, 5, 7, 9)

    def test_format_for_hash(self):
        assert format_date_for_hash(datetime(2024, 3, 5, 7, 9)) == "2024-03-05 07:09"

    def test_aware_datetime_not_converted(self):
        """Late-evening local time keeps its own calendar day."""
        plus_two = timezone(timedelta(hours=2))
        value = datetime(2024, 3, 15, 23, 58, tzinfo=plus_two)
        assert format_date_for_hash(value) == "2024-03-15 23:58"

    def test_round_trip_to_datetime(self):
        components = DateComponents(2024, 12, 31, 23, 59)
        assert components.to_datetime() == datetime(2024, 12, 31, 23, 59)


class TestComputeContentHash:
    """Tests for statement / CSV import hashes."""

    def test_matches_rolling_hash_of_payload(self):
        date = datetime(2024, 3, 15, 9, 10)
        expected = format(rolling_hash("2024-03-15 09:10-COFFEE SHOP-120.5-UAH"), "x")
        assert compute_content_hash(date, "COFFEE SHOP", Decimal("120.50"), "UAH") == expected

    def test_deterministic(self):
        date = datetime(2024, 3, 15, 9, 10)
        h1 = compute_content_hash(date, "COFFEE SHOP", Decimal("120.50"), "UAH")
        h2 = compute_content_hash(date, "COFFEE SHOP", "120.5", "UAH")
        assert h1 == h2

    def test_seconds_ignored(self):
        h1 = compute_content_hash(datetime(2024, 3, 15, 9, 10, 0), "X", "1", "UAH")
        h2 = compute_content_hash(datetime(2024, 3, 15, 9, 10, 45), "X", "1", "UAH")
        assert h1 == h2

    def test_timezone_independent(self):
        """Same wall-clock time hashes the same under any UTC offset."""
        naive = datetime(2024, 3, 15, 23, 58)
        utc = naive.replace(tzinfo=timezone.utc)
        kyiv = naive.replace(tzinfo=timezone(timedelta(hours=2)))
        new_york = naive.replace(tzinfo=timezone(timedelta(hours=-5)))

        hashes = {
            compute_content_hash(value, "SHOP", Decimal("10"), "EUR")
            for value in (naive, utc, kyiv, new_york)
        }
        assert len(hashes) == 1

    def test_each_component_changes_hash(self):
        date = datetime(2024, 3, 15, 9, 10)
        base = compute_content_hash(date, "SHOP", "10", "EUR")
        assert compute_content_hash(date + timedelta(minutes=1), "SHOP", "10", "EUR") != base
        assert compute_content_hash(date, "SHOP2", "10", "EUR") != base
        assert compute_content_hash(date, "SHOP", "11", "EUR") != base
        assert compute_content_hash(date, "SHOP", "10", "USD") != base


class TestQifHash:
    """Tests for QIF hashes and paired counterparts."""

    def test_format(self):
        date = datetime(2024, 3, 15, 12, 0)
        payload = "Checking|2024-03-15|-42.5|Weekly groceries"
        expected = f"qif-{abs(rolling_hash(payload)):x}"
        assert compute_qif_hash("Checking", date, Decimal("-42.50"), "Weekly groceries") == expected

    def test_sign_matters(self):
        date = datetime(2024, 3, 15, 12, 0)
        assert compute_qif_hash("A", date, "-10", "x") != compute_qif_hash("A", date, "10", "x")

    def test_time_of_day_ignored(self):
        h1 = compute_qif_hash("A", datetime(2024, 3, 15, 0, 0), "10", "x")
        h2 = compute_qif_hash("A", datetime(2024, 3, 15, 12, 0), "10", "x")
        assert h1 == h2

    def test_paired_hash(self):
        assert paired_hash("qif-abc") == "qif-abc-paired"

    def test_is_qif_hash(self):
        assert is_qif_hash("qif-1f")
        assert not is_qif_hash("1f")
        assert not is_qif_hash("")
