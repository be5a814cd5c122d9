from __future__ import annotations

import logging
import sys
from datetime import date
from importlib.resources import files

from fiscalis.services.exceptions import InvariantViolation, NotFoundError, ValidationError


def _init_config() -> None:
    """Copy bundled config templates to the user's config/data directories."""
    from fiscalis.config import get_config_dir, get_data_dir

    config_dir = get_config_dir()
    data_dir = get_data_dir()
    templates = files("fiscalis") / "templates"

    config_dir.mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    copied = 0
    for rel in ["company.yaml.example", "missions.yaml.example", "fiscal_years.yaml.example"]:
        dest = config_dir / rel
        if dest.exists():
            print(f"  already exists: {dest}")
            continue
        src = templates / rel
        with src.open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  created: {dest}")
        copied += 1

    print()
    print(f"Config: {config_dir}")
    print(f"Data:   {data_dir}")
    print()
    if copied:
        print("Next steps:")
        print(f"  1. cp {config_dir / 'company.yaml.example'} {config_dir / 'company.yaml'}")
        print("  2. Edit company.yaml with your regime (ACRE, liberatory election, parts)")
        print(f"  3. cp {config_dir / 'missions.yaml.example'} {config_dir / 'missions.yaml'}")
        print("  4. Run: fiscalis generate <year>")
    else:
        print("No new file created (all already existed).")


def _preflight() -> bool:
    """Verify minimal config before running a ledger command."""
    from fiscalis.config import get_config_dir, get_data_dir

    get_data_dir().mkdir(parents=True, exist_ok=True)

    config_dir = get_config_dir()
    if not config_dir.is_dir():
        print(f"Error: config directory not found: {config_dir}")
        print("Run 'fiscalis init' to create the example files.")
        return False
    if not (config_dir / "company.yaml").is_file():
        print(f"Error: company.yaml not found in {config_dir}")
        print("Run 'fiscalis init' and configure your regime.")
        return False
    return True


def _build_ledger():
    """Wire the ledger to the JSON store, missions and fiscal-year table; sync regime flags."""
    from fiscalis.config import load_company_profile
    from fiscalis.models.regime import RegimeFlags
    from fiscalis.services.fiscal_years import load_fiscal_years
    from fiscalis.services.ledger import ObligationLedger
    from fiscalis.services.revenue import MissionRevenue
    from fiscalis.utils.company_store import JsonCompanyStore

    ledger = ObligationLedger(JsonCompanyStore(), MissionRevenue.from_config(), load_fiscal_years())
    ledger.update_regime(RegimeFlags.from_dict(load_company_profile()))
    return ledger


def _print_obligations(obligations) -> None:
    from fiscalis.utils.formatters import format_eur

    if not obligations:
        print("  (none)")
        return
    for o in obligations:
        status = f"paid {format_eur(o.paid_amount)} on {o.paid_date}" if o.paid else "unpaid"
        print(
            f"  {o.id:<24} {o.period_label:<16} due {o.deadline}  "
            f"{format_eur(o.amount):>14}  [{status}]"
        )


def _cmd_generate(ledger, args: list[str]) -> None:
    from fiscalis.utils.validators import validate_year

    year = validate_year(args[0]) if args else date.today().year
    created = ledger.generate_contribution_obligations(year)
    created += ledger.generate_income_tax_installments(year)
    print(f"{len(created)} obligation(s) created for {year}")
    _print_obligations(created)


def _cmd_recalc(ledger, args: list[str]) -> None:
    warnings = ledger.recalculate_unpaid()
    print("Unpaid obligations recalculated.")
    for w in warnings:
        print(f"  WARNING: {w}")


def _cmd_pay(ledger, args: list[str]) -> None:
    from fiscalis.utils.validators import validate_date, validate_monetary

    if len(args) < 2:
        raise ValidationError("Usage: fiscalis pay <id> <amount> [YYYY-MM-DD]")
    amount = validate_monetary(args[1])
    paid_date = validate_date(args[2]) if len(args) > 2 else None
    obligation = ledger.mark_paid(args[0], amount, paid_date)
    print(f"{obligation.id} marked as paid.")


def _cmd_unpay(ledger, args: list[str]) -> None:
    if not args:
        raise ValidationError("Usage: fiscalis unpay <id>")
    obligation = ledger.mark_unpaid(args[0])
    print(f"{obligation.id} marked as unpaid.")


def _cmd_status(ledger, args: list[str]) -> None:
    from fiscalis.utils.company_store import check_store_health
    from fiscalis.utils.formatters import format_eur
    from fiscalis.utils.validators import validate_year

    year = validate_year(args[0]) if args else date.today().year
    print(f"Obligations {year}")
    _print_obligations(ledger.by_year(year))
    print()
    for kind, stats in ledger.statistics(year).items():
        print(
            f"  {kind:<24} total {format_eur(stats.total):>14}  paid {format_eur(stats.paid):>14}"
            f"  unpaid {format_eur(stats.unpaid):>14}  ({stats.count_paid}/{stats.count})"
        )

    health = check_store_health()
    if not health.ok:
        print("  WARNING: company.json is unreadable")
    for backup in health.corrupt_backups:
        print(f"  WARNING: corrupt store backed up to {backup}")


def _cmd_overdue(ledger, args: list[str]) -> None:
    print("Overdue obligations")
    _print_obligations(ledger.overdue())


def _cmd_upcoming(ledger, args: list[str]) -> None:
    try:
        months = int(args[0]) if args else 3
    except ValueError:
        raise ValidationError(f"Invalid number of months: {args[0]!r}") from None
    print(f"Obligations due within {months} month(s)")
    _print_obligations(ledger.upcoming(months))


def _cmd_history(ledger, args: list[str]) -> None:
    from fiscalis.utils.formatters import format_eur

    history = ledger.payment_history()
    if not history:
        print("  (no payment recorded)")
    for h in history:
        print(
            f"  {h.payment_date}  {h.period_label:<16} {format_eur(h.amount):>14}"
            f"  expected {format_eur(h.expected_amount):>14}"
        )


def _cmd_ceiling(ledger, args: list[str]) -> None:
    from fiscalis.services.tax_calculator import check_revenue_ceiling
    from fiscalis.utils.formatters import format_eur, format_percent
    from fiscalis.utils.validators import validate_year

    year = validate_year(args[0]) if args else date.today().year
    revenue = ledger.revenue.annual_revenue(year)
    status = check_revenue_ceiling(revenue, ledger.regime().activity_class, year, table=ledger.table)
    print(f"Revenue {year}: {format_eur(status.revenue)} / {format_eur(status.ceiling)}")
    print(f"  usage {format_percent(status.usage_ratio)}, remaining {format_eur(status.remaining)}")
    if status.exceeded:
        print("  CEILING EXCEEDED")
    elif status.warning:
        print("  WARNING: above 80% of the ceiling")


COMMANDS = {
    "generate": _cmd_generate,
    "recalc": _cmd_recalc,
    "pay": _cmd_pay,
    "unpay": _cmd_unpay,
    "status": _cmd_status,
    "overdue": _cmd_overdue,
    "upcoming": _cmd_upcoming,
    "history": _cmd_history,
    "ceiling": _cmd_ceiling,
}


def _usage() -> None:
    print("Usage: fiscalis <command> [args]")
    print("Commands: init, " + ", ".join(COMMANDS))


def main() -> None:
    """Entry point for the fiscalis CLI."""
    from fiscalis.config import get_log_level

    logging.basicConfig(level=get_log_level(), format="%(levelname)s %(name)s: %(message)s")

    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help", "help"):
        _usage()
        return
    command, args = sys.argv[1], sys.argv[2:]

    if command == "init":
        _init_config()
        return

    handler = COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command: {command}")
        _usage()
        sys.exit(2)

    if not _preflight():
        sys.exit(1)

    try:
        handler(_build_ledger(), args)
    except (NotFoundError, InvariantViolation, ValidationError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
