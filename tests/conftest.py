"""Test fixtures and utilities."""

from decimal import Decimal
from pathlib import Path

import pytest

from ledgerflow.currency import CurrencyConverter, StaticRateProvider
from ledgerflow.state_store import LedgerStore

# Rates per 1 USD chosen so conversions stay exact
TEST_RATES = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.5"),
    "UAH": Decimal("40"),
    "GBP": Decimal("0.8"),
    "JPY": Decimal("150"),
}

SAMPLE_QIF = """!Account
NChecking
TBank
^
!Type:Bank
D2024/03/15
T-42.50
PSupermarket
MWeekly groceries
LGroceries
^
D2024/03/16
T1500.00
PEmployer
LSalary
^
D2024/03/17
T-200.00
PTransfer
L[Savings]
^
!Account
NSavings
TBank
^
!Type:Bank
D2024/03/18
T10.00
M(null)
LInterest
^
"""

SAMPLE_MONOBANK_CSV = (
    '"Date and time",Description,MCC,"Card currency amount, (UAH)",'
    '"Operation amount","Operation currency","Exchange rate",'
    '"Commission, (UAH)","Cashback amount, (UAH)",Balance\n'
    '"15.03.2024 09:10:00","COFFEE SHOP",5814,-120.50,-120.50,UAH,—,0.00,0.00,9879.50\n'
    '"16.03.2024 18:45:12","Salary March",4829,25000.00,25000.00,UAH,—,0.00,0.00,34879.50\n'
)

SAMPLE_PRIVAT_TEXT = """PrivatBank statement
Card 545708******2220
22.11.2025
20:35
545708******2220
Contract No. SAMDNWFC000129164
316
from 25.06.2025
KYIVSKYI METROPOLITEN,
KYIV
-8,00
UAH
23.11.2025
09:12
545708******2220
Contract No. SAMDNWFC000129164
from ANDRII KURTYSHANOV 300,00
UAH
"""

SAMPLE_TRUSTEE_TEXT = """Trustee Wallet statement
Card number: ****1234
Per Period: 2025.11.01 - 2025.11.30
Date and time of operation
2025.11.01, 15:41147 VELMART 31 KIEV UKR-2.18 EUR
2025.11.02, 10:05TOP UP FROM CARD
WALLET 100.00 EUR
The document is electronically generated
"""


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path."""
    return tmp_path / "test_ledger.db"


@pytest.fixture
def store(temp_db) -> LedgerStore:
    """Fresh ledger store."""
    return LedgerStore(temp_db)


@pytest.fixture
def converter() -> CurrencyConverter:
    """Converter over a fixed rate table."""
    return CurrencyConverter(StaticRateProvider(TEST_RATES))


@pytest.fixture
def sample_qif() -> str:
    return SAMPLE_QIF


@pytest.fixture
def sample_csv() -> str:
    return SAMPLE_MONOBANK_CSV


@pytest.fixture
def sample_privat_text() -> str:
    return SAMPLE_PRIVAT_TEXT


@pytest.fixture
def sample_trustee_text() -> str:
    return SAMPLE_TRUSTEE_TEXT


@pytest.fixture
def rates() -> dict[str, Decimal]:
    """The fixed rate table behind the `converter` fixture."""
    return dict(TEST_RATES)
