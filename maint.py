#!/usr/bin/env python3
"""
Command line front end for the service interval engine.

Commands:
  init-db        - Create tables and load seed data
  status         - Show what maintenance is due, overdue, or upcoming
  log            - Record a maintenance expense
  remove-expense - Remove a maintenance expense
  set-interval   - Customize a vehicle's interval for a maintenance kind
  clear-interval - Drop a customization, falling back to the default
  override       - Set next due date/odometer by hand
  recalc         - Rebuild derived intervals from expense history
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from tabulate import tabulate

from service_intervals import (
    Config,
    ExpenseBook,
    FullRecalculator,
    IncrementalMaintainer,
    IntervalSettingsBook,
    IntervalSettingsResolver,
    IntervalView,
    QueryService,
    ServiceIntervalError,
    Store,
    StoreCurrentMileage,
    StoreUnitPreferences,
    StoreVehicleOwnership,
    Urgency,
    ValidationFailedError,
    load_config,
)
from service_intervals.loader import DEFAULT_SEED, seed_from_file
from service_intervals.store import maintenance_kinds
from service_intervals.validation import parse_date

logger = logging.getLogger("maint")

# =============================================================================
# Wiring
# =============================================================================


@dataclass
class Services:
    store: Store
    query: QueryService
    expenses: ExpenseBook
    settings: IntervalSettingsBook
    recalculator: FullRecalculator


def build_services(config: Config) -> Services:
    """Connect every component to one store."""
    store = Store(config.database_url, echo=config.echo_sql)
    resolver = IntervalSettingsResolver()
    maintainer = IncrementalMaintainer(store, resolver)
    ownership = StoreVehicleOwnership(store)
    preferences = StoreUnitPreferences(
        store,
        default_distance_unit=config.default_distance_unit,
        default_notify_in_days=config.notify_in_days,
        default_notify_in_mileage=config.notify_in_mileage,
    )
    return Services(
        store=store,
        query=QueryService(store, ownership, StoreCurrentMileage(store), preferences),
        expenses=ExpenseBook(store, maintainer),
        settings=IntervalSettingsBook(store, maintainer, ownership, preferences),
        recalculator=FullRecalculator(store, resolver),
    )


def kind_names(store: Store) -> Dict[int, str]:
    with store.engine.connect() as conn:
        rows = conn.execute(select(maintenance_kinds.c.id, maintenance_kinds.c.name))
        return {row.id: row.name for row in rows}


def resolve_kind(store: Store, value: str) -> int:
    """Accept a kind id or its code (e.g. 'oil_change')."""
    if value.isdigit():
        return int(value)
    with store.engine.connect() as conn:
        row = conn.execute(
            select(maintenance_kinds.c.id).where(maintenance_kinds.c.code == value.lower())
        ).first()
    if row is None:
        raise ValidationFailedError.single("kind", f"Unknown maintenance kind '{value}'")
    return row.id


# =============================================================================
# Formatting helpers
# =============================================================================


def format_distance(distance: Optional[float], unit: str = "") -> str:
    """Format a distance for display."""
    if distance is None:
        return "-"
    text = f"{distance:,.0f}"
    return f"{text} {unit}" if unit else text


def format_time_remaining(days: Optional[int]) -> str:
    """Format remaining time for display (e.g., '3mo 15d' or '-2mo 5d')."""
    if days is None:
        return "-"
    sign = "-" if days < 0 else ""
    days = abs(days)
    months, rest = divmod(days, 30)
    if months > 0:
        return f"{sign}{months}mo {rest}d"
    return f"{sign}{days}d"


def format_last_done(view: IntervalView) -> str:
    parts = [view.max_service_date.isoformat()]
    if view.max_odometer is not None:
        parts.append(format_distance(view.max_odometer))
    return " @ ".join(parts)


def make_status_table(views: List[IntervalView], names: Dict[int, str]) -> List[List[str]]:
    """Convert enriched intervals to table rows."""
    rows = []
    for view in views:
        rows.append(
            [
                view.vehicle_id,
                names.get(view.kind_id, str(view.kind_id)),
                view.interval_type.name,
                format_last_done(view),
                format_distance(view.next_due_odometer),
                view.next_due_date.isoformat() if view.next_due_date else "-",
                format_distance(view.remaining_mileage),
                format_time_remaining(view.remaining_days),
                view.id,
            ]
        )
    return rows


def print_errors(error: ServiceIntervalError) -> None:
    if isinstance(error, ValidationFailedError):
        print("Error: invalid input")
        for field, message in error.errors:
            print(f"  {field}: {message}")
    else:
        print(f"Error: {error}")


# =============================================================================
# Commands
# =============================================================================


def cmd_init_db(services: Services, args) -> int:
    """Create the schema and load seed data."""
    services.store.create_schema()
    seed = args.seed or DEFAULT_SEED
    summary = seed_from_file(services.store, seed)
    print(f"Database ready. Loaded {summary.kinds} kinds, {summary.defaults} defaults from {seed}")
    if summary.vehicles or summary.accounts:
        print(f"  Vehicles: {summary.vehicles}  Accounts: {summary.accounts}")
    if summary.refreshed:
        print(f"  Recomputed {summary.refreshed} intervals after rule changes")
    return 0


def cmd_status(services: Services, args) -> int:
    """Show what maintenance is due, overdue, or upcoming."""
    views = services.query.list(
        args.account,
        vehicle_ids=args.vehicle,
        urgency=args.urgency,
    )
    if not views:
        print("No service intervals.")
        return 0

    names = kind_names(services.store)
    unit = views[0].distance_unit
    headers = [
        "Vehicle",
        "Kind",
        "Tracking",
        "Last Done",
        f"Due ({unit})",
        "Due (date)",
        f"Remaining ({unit})",
        "Remaining (time)",
        "Id",
    ]
    sections = [
        ("OVERDUE:", Urgency.OVERDUE),
        ("DUE SOON:", Urgency.DUE_SOON),
        ("UPCOMING:", Urgency.UPCOMING),
        ("OK:", Urgency.OK),
    ]
    for title, urgency in sections:
        group = [v for v in views if v.urgency == urgency]
        if not group:
            continue
        print(title)
        print(tabulate(make_status_table(group, names), headers=headers, tablefmt="simple"))
        print()
    return 0


def cmd_log(services: Services, args) -> int:
    """Record a maintenance expense."""
    kind_id = resolve_kind(services.store, args.kind)
    service_date = parse_date(args.date, "date") if args.date else date.today()
    expense = services.expenses.add(args.vehicle, kind_id, service_date, args.odometer)
    print(f"Expense {expense.id} saved.")
    print(f"  Vehicle:  {expense.vehicle_id}")
    print(f"  Kind:     {kind_names(services.store).get(kind_id, kind_id)}")
    print(f"  Date:     {expense.service_date.isoformat()}")
    if expense.odometer_km is not None:
        print(f"  Odometer: {format_distance(expense.odometer_km, 'km')}")
    return 0


def cmd_remove_expense(services: Services, args) -> int:
    expense = services.expenses.remove(args.expense_id)
    print(f"Expense {expense.id} removed.")
    return 0


def cmd_set_interval(services: Services, args) -> int:
    """Customize a vehicle's interval for one maintenance kind."""
    kind_id = resolve_kind(services.store, args.kind)
    merged = services.settings.set_override(
        args.account,
        args.vehicle,
        kind_id,
        args.interval_type,
        mileage_interval=args.mileage,
        days_interval=args.days,
    )
    print(
        f"Interval for {merged.vehicle_id} / kind {merged.kind_id}: "
        f"{merged.interval_type.name}, "
        f"{format_distance(merged.mileage_interval, merged.distance_unit)}, "
        f"{merged.days_interval} days"
    )
    return 0


def cmd_clear_interval(services: Services, args) -> int:
    kind_id = resolve_kind(services.store, args.kind)
    merged = services.settings.remove_override(args.account, args.vehicle, kind_id)
    source = "default" if merged.has_default else "no tracking"
    print(f"Customization removed; now using {source} ({merged.interval_type.name}).")
    return 0


def cmd_override(services: Services, args) -> int:
    """Set next due date and/or odometer by hand."""
    params = {}
    if args.clear_date:
        params["next_due_date"] = None
    elif args.date is not None:
        params["next_due_date"] = args.date
    if args.clear_odometer:
        params["next_due_odometer"] = None
    elif args.odometer is not None:
        params["next_due_odometer"] = args.odometer

    view = services.query.update(args.account, args.interval_id, **params)
    print(f"Interval {view.id} updated.")
    print(f"  Due (date):  {view.next_due_date.isoformat() if view.next_due_date else '-'}")
    print(f"  Due ({view.distance_unit}):    {format_distance(view.next_due_odometer)}")
    print(f"  Urgency:     {view.urgency.value}")
    return 0


def cmd_recalc(services: Services, args) -> int:
    """Rebuild derived intervals."""
    if args.vehicle:
        records = services.recalculator.recalculate_for_vehicle(args.vehicle)
        print(f"Recalculated {len(records)} intervals for vehicle {args.vehicle}.")
    else:
        count = services.recalculator.recalculate_all()
        print(f"Recalculated {count} intervals.")
    return 0


COMMANDS = {
    "init-db": cmd_init_db,
    "status": cmd_status,
    "log": cmd_log,
    "remove-expense": cmd_remove_expense,
    "set-interval": cmd_set_interval,
    "clear-interval": cmd_clear_interval,
    "override": cmd_override,
    "recalc": cmd_recalc,
}

# =============================================================================
# Main
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Service interval tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init-db --seed seeds/garage.yaml
  %(prog)s status acct-1
  %(prog)s status acct-1 --vehicle car-1 --urgency overdue --urgency due_soon
  %(prog)s log car-1 oil_change --date 2024-05-01 --odometer 58000
  %(prog)s set-interval acct-1 car-1 oil_change MILEAGE_OR_DAYS \\
      --mileage 5000 --days 180
  %(prog)s override acct-1 <interval-id> --date 2024-12-01
  %(prog)s recalc --vehicle car-1
""",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to YAML config file (default: $SERVICE_INTERVALS_CONFIG)",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        help="SQLAlchemy database URL (overrides config)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create tables and load seed data")
    init_parser.add_argument(
        "--seed",
        type=Path,
        help="Seed YAML file (default: packaged maintenance kinds)",
    )

    status_parser = subparsers.add_parser(
        "status", help="Show what maintenance is due, overdue, or upcoming"
    )
    status_parser.add_argument("account", type=str, help="Account id")
    status_parser.add_argument(
        "--vehicle",
        action="append",
        help="Limit to a vehicle (repeatable)",
    )
    status_parser.add_argument(
        "--urgency",
        action="append",
        help="Limit to an urgency: overdue, due_soon, upcoming, ok (repeatable)",
    )

    log_parser = subparsers.add_parser("log", help="Record a maintenance expense")
    log_parser.add_argument("vehicle", type=str, help="Vehicle id")
    log_parser.add_argument("kind", type=str, help="Maintenance kind id or code")
    log_parser.add_argument(
        "--date",
        type=str,
        help="Service date in YYYY-MM-DD format (default: today)",
    )
    log_parser.add_argument(
        "--odometer",
        type=float,
        help="Odometer reading in km at time of service",
    )

    remove_parser = subparsers.add_parser("remove-expense", help="Remove a maintenance expense")
    remove_parser.add_argument("expense_id", type=str, help="Expense id")

    set_parser = subparsers.add_parser(
        "set-interval", help="Customize a vehicle's interval for a maintenance kind"
    )
    set_parser.add_argument("account", type=str, help="Account id")
    set_parser.add_argument("vehicle", type=str, help="Vehicle id")
    set_parser.add_argument("kind", type=str, help="Maintenance kind id or code")
    set_parser.add_argument(
        "interval_type",
        type=str,
        help="NONE, MILEAGE_ONLY, DAYS_ONLY, MILEAGE_OR_DAYS or MILEAGE_AND_DAYS",
    )
    set_parser.add_argument(
        "--mileage",
        type=float,
        default=0,
        help="Mileage interval in the account's distance unit",
    )
    set_parser.add_argument("--days", type=int, default=0, help="Days interval")

    clear_parser = subparsers.add_parser(
        "clear-interval", help="Drop a customization, falling back to the default"
    )
    clear_parser.add_argument("account", type=str, help="Account id")
    clear_parser.add_argument("vehicle", type=str, help="Vehicle id")
    clear_parser.add_argument("kind", type=str, help="Maintenance kind id or code")

    override_parser = subparsers.add_parser(
        "override", help="Set next due date/odometer by hand"
    )
    override_parser.add_argument("account", type=str, help="Account id")
    override_parser.add_argument("interval_id", type=str, help="Service interval id")
    override_parser.add_argument("--date", type=str, help="Next due date (YYYY-MM-DD)")
    override_parser.add_argument(
        "--odometer",
        type=float,
        help="Next due odometer in the account's distance unit",
    )
    override_parser.add_argument(
        "--clear-date", action="store_true", help="Clear the next due date"
    )
    override_parser.add_argument(
        "--clear-odometer", action="store_true", help="Clear the next due odometer"
    )

    recalc_parser = subparsers.add_parser(
        "recalc", help="Rebuild derived intervals from expense history"
    )
    recalc_parser.add_argument("--vehicle", type=str, help="Only rebuild this vehicle")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ServiceIntervalError as e:
        print(f"Error: {e}")
        return 1
    if args.database_url:
        config.database_url = args.database_url

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    services = build_services(config)
    try:
        return COMMANDS[args.command](services, args)
    except ServiceIntervalError as e:
        print_errors(e)
        return 1
    except SQLAlchemyError as e:
        logger.error("Database error: %s", e)
        return 1
    finally:
        services.store.dispose()


if __name__ == "__main__":
    sys.exit(main() or 0)
