"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..currency import CurrencyConverter, RateCache, create_rate_provider, format_currency
from ..matching import CategoryMatcher
from ..parsers import (
    ColumnMapping,
    FormatError,
    ParseReport,
    QIFParser,
    get_parser,
    parse_statement,
    register_mapping,
)
from ..parsers.qif_parser import QIFParseResult
from ..schemas.budget import BudgetPeriod
from ..services.budget_progress import (
    BudgetProgressService,
    get_current_period_dates,
    get_days_remaining,
    get_period_label,
)
from ..services.importer import ImportResult, ImportService
from ..services.transfers import TransferError, TransferReconciler
from ..state_store import LedgerStore

logger = logging.getLogger(__name__)

STATEMENT_SUFFIXES = {".pdf", ".txt"}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledgerflow",
        description="Import bank exports into a personal ledger and analyze transfers and budgets",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init command
    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing config file"
    )

    # parse command
    parse_parser = subparsers.add_parser("parse", help="Parse a file and print its transactions")
    parse_parser.add_argument("file", type=Path, help="QIF, CSV, PDF or statement text file")
    parse_parser.add_argument(
        "--format",
        type=str,
        default="auto",
        help="qif, privat, trustee, a CSV mapping name, or auto (default)",
    )
    parse_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    # import command
    import_parser = subparsers.add_parser("import", help="Import a file into the ledger")
    import_parser.add_argument("file", type=Path, help="QIF, CSV, PDF or statement text file")
    import_parser.add_argument("--format", type=str, default="auto", help="Parser name or auto")
    import_parser.add_argument(
        "--account",
        type=str,
        help="Target account (QIF: used for every unmapped QIF account)",
    )
    import_parser.add_argument(
        "--currency",
        type=str,
        help="Currency of --account for QIF imports (default: base currency)",
    )
    import_parser.add_argument(
        "--no-categorize", action="store_true", help="Do not suggest categories"
    )
    import_parser.add_argument(
        "--dry-run", action="store_true", help="Parse and filter duplicates without writing"
    )

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a transaction")
    delete_parser.add_argument("transaction_id", type=int)

    # transfers command
    transfers_parser = subparsers.add_parser("transfers", help="Transfer reconciliation")
    transfers_sub = transfers_parser.add_subparsers(dest="transfers_command")
    transfers_sub.add_parser("report", help="Show paired transfers and conversion costs")
    link_parser = transfers_sub.add_parser("link", help="Link a Transfer Out with a Transfer In")
    link_parser.add_argument("out_id", type=int)
    link_parser.add_argument("in_id", type=int)
    unlink_parser = transfers_sub.add_parser("unlink", help="Remove a transfer link")
    unlink_parser.add_argument("out_id", type=int)
    unlink_parser.add_argument("in_id", type=int)

    # rates command
    rates_parser = subparsers.add_parser("rates", help="Show exchange rates or convert an amount")
    rates_parser.add_argument(
        "--convert",
        nargs=3,
        metavar=("AMOUNT", "FROM", "TO"),
        help="Convert AMOUNT from one currency to another",
    )

    # budget command
    budget_parser = subparsers.add_parser("budget", help="Budgets and their progress")
    budget_sub = budget_parser.add_subparsers(dest="budget_command")
    budget_sub.add_parser("status", help="Show progress of active budgets")
    add_budget = budget_sub.add_parser("add", help="Create a budget for an expense category")
    add_budget.add_argument("category", type=str, help="Expense category name")
    add_budget.add_argument("amount", type=str, help="Target amount")
    add_budget.add_argument(
        "--period",
        choices=[p.value for p in BudgetPeriod],
        default=BudgetPeriod.MONTH.value,
    )
    add_budget.add_argument("--currency", type=str, help="Budget currency (default: base)")
    add_budget.add_argument("--threshold", type=int, default=80, help="Alert threshold in percent")

    # status command
    subparsers.add_parser("status", help="Show ledger statistics")

    return parser


def build_converter(config: Config) -> CurrencyConverter:
    provider = create_rate_provider(
        config.currency.provider, config.currency.api_key, config.currency.timeout
    )
    return CurrencyConverter(provider, cache=RateCache(config.currency.cache_ttl_seconds))


def register_configured_mappings(config: Config) -> None:
    """Register CSV layouts declared under imports.csv_mappings."""
    for entry in config.imports.csv_mappings:
        register_mapping(ColumnMapping(**entry), replace=True)


def _resolve_format(path: Path, fmt: str) -> str:
    if fmt != "auto":
        return fmt
    suffix = path.suffix.lower()
    if suffix == ".qif":
        return "qif"
    if suffix == ".csv":
        return "monobank"
    if suffix in STATEMENT_SUFFIXES:
        return "statement"
    raise ValueError(f"Cannot detect the format of '{path.name}', use --format")


def read_file(path: Path, fmt: str) -> tuple[ParseReport, QIFParseResult | None]:
    """Parse a file. QIF files also return the per-account result."""
    data = path.read_bytes()
    fmt = _resolve_format(path, fmt)

    if fmt == "qif":
        qif_parser = QIFParser()
        qif_result = qif_parser.parse_qif(data)
        return qif_parser.report_from(qif_result), qif_result
    if fmt == "statement":
        return parse_statement(data), None
    if fmt in ("privat", "trustee"):
        return parse_statement(data, bank=fmt), None
    return get_parser(fmt).parse_report(data), None


def cmd_init(config_path: Path, force: bool = False) -> int:
    """Write a default config file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    try:
        create_default_config(config_path)
    except OSError as e:
        print(f"❌ Failed to write config: {e}")
        return 1
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_parse(config: Config, path: Path, fmt: str, as_json: bool) -> int:
    """Parse a file and print the result."""
    print(f"🔍 Parsing {path}...")
    try:
        report, _ = read_file(path, fmt)
    except (FormatError, ValueError, OSError) as e:
        print(f"❌ {e}")
        return 1

    if as_json:
        print(
            json.dumps(
                {
                    "parser": report.parser,
                    "source": report.source,
                    "metadata": report.metadata,
                    "transactions": [t.to_dict() for t in report.transactions],
                    "skipped": [str(err) for err in report.errors],
                },
                indent=2,
                ensure_ascii=False,
                default=str,
            )
        )
        return 0

    for txn in report.transactions:
        sign = "-" if txn.type.value == "expense" else "+"
        print(
            f"  {txn.date:%Y-%m-%d %H:%M}  {sign}{format_currency(txn.amount, txn.currency):>14}  "
            f"{txn.description}"
        )
    for err in report.errors:
        print(f"  ⚠️  {err}")

    print(f"\n✓ {len(report.transactions)} transaction(s), {report.skipped} skipped")
    return 0


def _print_import_result(result: ImportResult) -> None:
    print(f"\n✓ Imported:    {result.imported}")
    if result.paired_created:
        print(f"  Counterparts: {result.paired_created}")
    print(f"  Duplicates:  {result.duplicates}")
    print(f"  Failed:      {result.failed}")
    for name in result.skipped_accounts:
        print(f"  ⏭️  QIF account '{name}' not mapped")


def cmd_import(
    config: Config,
    path: Path,
    fmt: str,
    account: str | None,
    currency: str | None,
    auto_categorize: bool,
    dry_run: bool,
) -> int:
    """Import a file into the ledger."""
    print(f"📥 Importing {path}...")
    try:
        report, qif_result = read_file(path, fmt)
    except (FormatError, ValueError, OSError) as e:
        print(f"❌ {e}")
        return 1

    store = LedgerStore(config.state_db_path)
    user_id = config.user_id
    store.ensure_default_categories(user_id)

    if dry_run:
        known = store.get_imported_hashes(user_id, report.source)
        new = [t for t in report.transactions if t.hash not in known]
        print(f"\n[DRY RUN] {len(new)} new, {len(report.transactions) - len(new)} already imported")
        return 0

    service = ImportService(
        store,
        matcher=CategoryMatcher(config.matching.name_threshold, config.matching.history_threshold),
        converter=build_converter(config),
        base_currency=config.currency.base_currency,
        in_batch_dedup=config.imports.in_batch_dedup,
    )
    auto_categorize = auto_categorize and config.imports.auto_categorize

    if qif_result is not None:
        account_map = config.qif_account_map()
        if account:
            for acc in qif_result.accounts:
                account_map.setdefault(
                    acc.account.name, (account, currency or config.currency.base_currency)
                )
        result = service.import_qif(user_id, qif_result, account_map, auto_categorize)
    else:
        result = service.import_transactions(
            user_id,
            account or config.imports.default_account,
            report.source,
            report.transactions,
            auto_categorize=auto_categorize,
        )

    _print_import_result(result)
    if report.skipped:
        print(f"  Unreadable:  {report.skipped}")
    return 0 if result.failed == 0 else 1


def cmd_delete(config: Config, transaction_id: int) -> int:
    """Delete a transaction and its import history."""
    store = LedgerStore(config.state_db_path)
    outcome = ImportService(store).delete_transaction(config.user_id, transaction_id)
    if not outcome.deleted:
        print(f"❌ Transaction {transaction_id} not found")
        return 1
    print(f"✓ Deleted transaction {transaction_id}")
    if outcome.cleanup_warning:
        print(f"  ⚠️  {outcome.cleanup_warning}")
    return 0


def cmd_transfers(config: Config, action: str | None, out_id: int | None, in_id: int | None) -> int:
    """Transfer report and manual linking."""
    store = LedgerStore(config.state_db_path)
    base = config.currency.base_currency
    reconciler = TransferReconciler(store, build_converter(config), base_currency=base)

    try:
        if action == "link":
            pair_id = reconciler.link(config.user_id, out_id, in_id)
            print(f"✓ Linked {out_id} → {in_id} ({pair_id})")
            return 0
        if action == "unlink":
            reconciler.unlink(config.user_id, out_id, in_id)
            print(f"✓ Unlinked {out_id} → {in_id}")
            return 0
        report = reconciler.reconcile(config.user_id)
    except (TransferError, ValueError) as e:
        print(f"❌ {e}")
        return 1

    summary = report.summary
    print("\n🔁 Transfers")
    print("=" * 60)
    for pair in report.pairs:
        print(
            f"  {pair.date:%Y-%m-%d}  {pair.sent_amount} {pair.sent_currency} → "
            f"{pair.received_amount} {pair.received_currency}  "
            f"diff {format_currency(pair.diff, base)} ({pair.diff_pct:.2f}%)"
        )
    print()
    print(f"  Total diff:        {format_currency(summary.total_diff, base)}")
    print(f"  Total transferred: {format_currency(summary.total_sent_base, base)}")
    print(f"  Loss:              {summary.loss_percent:.2f}%")
    for stat in summary.by_currency_pair:
        print(f"  {stat.pair}: {format_currency(stat.total, base)} over {stat.count} transfer(s)")
    for txn in report.unlinked_out:
        print(f"  🔗 Unlinked out [{txn.id}] {txn.date:%Y-%m-%d} {txn.amount} {txn.currency}")
    for txn in report.unlinked_in:
        print(f"  🔗 Unlinked in  [{txn.id}] {txn.date:%Y-%m-%d} {txn.amount} {txn.currency}")
    return 0


def cmd_rates(config: Config, convert: list[str] | None) -> int:
    """Show rates or convert an amount."""
    converter = build_converter(config)

    if convert:
        raw_amount, from_currency, to_currency = convert
        try:
            amount = Decimal(raw_amount)
            converted = converter.convert(amount, from_currency.upper(), to_currency.upper())
        except (InvalidOperation, ValueError) as e:
            print(f"❌ {e}")
            return 1
        print(
            f"{format_currency(amount, from_currency.upper())} = "
            f"{format_currency(converted, to_currency.upper())}"
        )
        return 0

    rates = converter.get_rates()
    print(f"\n💱 Rates per 1 USD ({converter.last_source})")
    print("=" * 40)
    for code in sorted(rates):
        print(f"  {code}  {rates[code]}")
    return 0


def cmd_budget(config: Config, parsed: argparse.Namespace) -> int:
    """Budget management and progress."""
    store = LedgerStore(config.state_db_path)
    user_id = config.user_id

    if parsed.budget_command == "add":
        category = store.get_category_by_name(user_id, parsed.category)
        if category is None:
            print(f"❌ Category '{parsed.category}' not found")
            return 1
        try:
            amount = Decimal(parsed.amount)
        except InvalidOperation:
            print(f"❌ Invalid amount '{parsed.amount}'")
            return 1
        start, _ = get_current_period_dates(parsed.period)
        budget = store.create_budget(
            user_id,
            category.id,
            amount,
            (parsed.currency or config.currency.base_currency).upper(),
            BudgetPeriod(parsed.period),
            start,
            alert_threshold=parsed.threshold,
        )
        print(f"✓ Created {get_period_label(budget.period).lower()} budget {budget.id}")
        return 0

    service = BudgetProgressService(store, build_converter(config))
    budgets = {b.id: b for b in store.list_budgets(user_id)}
    now = datetime.now()

    try:
        results = service.progress_all(user_id, now=now)
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    print("\n📊 Budgets")
    print("=" * 60)
    for progress in results:
        budget = budgets[progress.budget_id]
        category = store.get_category(user_id, budget.category_id)
        _, period_end = get_current_period_dates(budget.period, now)
        marker = "🔴" if progress.is_over_budget else ("🟠" if progress.should_alert else "🟢")
        print(
            f"  {marker} {category.name if category else budget.category_id:<20} "
            f"{format_currency(progress.spent, budget.currency)} / "
            f"{format_currency(budget.amount, budget.currency)} "
            f"({progress.percentage}%, {get_days_remaining(period_end, now)} days left)"
        )
    return 0


def cmd_status(config: Config) -> int:
    """Show ledger status."""
    store = LedgerStore(config.state_db_path)
    stats = store.get_stats(config.user_id)

    print("\n📊 Ledger Status")
    print("=" * 40)
    print(f"  Transactions:           {stats['transactions']}")
    print(f"  Paired transfers:       {stats['paired_transactions']}")
    print(f"  Categories:             {stats['categories']}")
    print(f"  Import records:         {stats['imported_transactions']}")
    print(f"  Budgets:                {stats['budgets']}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init":
        return cmd_init(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except (ConfigValidationError, OSError, ValueError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    register_configured_mappings(config)

    # Route to command
    if parsed.command == "parse":
        return cmd_parse(config, parsed.file, parsed.format, parsed.json)
    elif parsed.command == "import":
        return cmd_import(
            config,
            parsed.file,
            parsed.format,
            parsed.account,
            parsed.currency,
            auto_categorize=not parsed.no_categorize,
            dry_run=parsed.dry_run,
        )
    elif parsed.command == "delete":
        return cmd_delete(config, parsed.transaction_id)
    elif parsed.command == "transfers":
        return cmd_transfers(
            config,
            parsed.transfers_command,
            getattr(parsed, "out_id", None),
            getattr(parsed, "in_id", None),
        )
    elif parsed.command == "rates":
        return cmd_rates(config, parsed.convert)
    elif parsed.command == "budget":
        return cmd_budget(config, parsed)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
