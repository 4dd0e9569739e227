"""Command-line interface for the tee-time lottery."""

from __future__ import annotations

import argparse
import json
from datetime import date

import yaml

from teelottery.config import AlgorithmConfig, load_config
from teelottery.domain.db import get_session, init_database
from teelottery.engine.maintenance import MaintenanceScheduler
from teelottery.engine.processor import LotteryProcessor, unassigned_results
from teelottery.io.export_csv import export_run_results_csv, export_speed_profiles_csv
from teelottery.io.import_csv import (
    import_entries_csv,
    import_members_csv,
    import_pace_csv,
    import_restrictions_csv,
    import_time_blocks_csv,
)
from teelottery.logging_config import setup_logging
from teelottery.services.algorithm_config import load_algorithm_config, save_algorithm_config
from teelottery.services.entries import cancel_entry, update_entry
from teelottery.services.stats import compute_processing_stats, format_run_summary


def _settings(args: argparse.Namespace):
    settings = load_config(args.config)
    if args.db:
        settings.database_url = args.db
    return settings


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}, expected YYYY-MM-DD")


def _print_run(session, run) -> None:
    print(
        f"[OK] Run {run.id} for {run.lottery_date}: {run.assigned_count}/{run.total_entries} entries assigned "
        f"({run.group_count} group, {run.individual_count} individual, {run.violation_count} restricted)"
    )
    for log in unassigned_results(session, run):
        detail = log.error_message or "; ".join((log.restriction_details or {}).get("reasons", []))
        suffix = f" - {detail}" if detail else ""
        print(f"[INFO] Entry {log.entry_id} (organizer {log.organizer_id}) unassigned: {log.assignment_reason}{suffix}")


def _cmd_init_db(args: argparse.Namespace) -> None:
    """Initialize the database."""
    settings = _settings(args)
    init_database(settings.database_url)
    print(f"[OK] Database initialized: {settings.database_url}")


def _cmd_import_csv(args: argparse.Namespace) -> None:
    """Import CSV data into database."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        if args.members:
            count = import_members_csv(session, args.members)
            print(f"[OK] Imported {count} members")

        if args.blocks:
            count = import_time_blocks_csv(session, args.blocks)
            print(f"[OK] Imported {count} time blocks")

        if args.restrictions:
            count = import_restrictions_csv(session, args.restrictions)
            print(f"[OK] Imported {count} restrictions")

        if args.entries:
            count = import_entries_csv(session, args.entries)
            print(f"[OK] Imported {count} lottery entries")

        if args.pace:
            count = import_pace_csv(session, args.pace)
            print(f"[OK] Imported {count} pace-of-play records")

        session.close()
        print("[OK] CSV import complete")

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Import failed: {e}")
        raise


def _cmd_process(args: argparse.Namespace) -> None:
    """Run the lottery for a date."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        MaintenanceScheduler(session, settings=settings).check_and_run()
        processor = LotteryProcessor(session, settings=settings)
        if args.replay:
            run = processor.reprocess(args.date, admin_id=args.admin)
        else:
            run = processor.process(args.date, admin_id=args.admin)
        _print_run(session, run)
        session.close()

    except Exception as e:
        session.close()
        print(f"[ERROR] Processing failed: {e}")
        raise


def _cmd_finalize(args: argparse.Namespace) -> None:
    """Finalize the canonical run for a date."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        run = LotteryProcessor(session, settings=settings).finalize(args.date)
        session.close()
        print(f"[OK] Lottery for {args.date} finalized at {run.finalized_at:%Y-%m-%d %H:%M:%S}")

    except Exception as e:
        session.close()
        print(f"[ERROR] Finalize failed: {e}")
        raise


def _cmd_override(args: argparse.Namespace) -> None:
    """Move an assigned entry to another block."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        entry = LotteryProcessor(session, settings=settings).override_assignment(
            args.entry, args.block, admin_id=args.admin
        )
        session.close()
        print(f"[OK] Entry {entry.id} moved to block {entry.assigned_time_block_id}")

    except Exception as e:
        session.close()
        print(f"[ERROR] Override failed: {e}")
        raise


def _cmd_cancel(args: argparse.Namespace) -> None:
    """Cancel a pending entry."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        entry = cancel_entry(session, args.entry)
        session.close()
        print(f"[OK] Entry {entry.id} cancelled")

    except Exception as e:
        session.close()
        print(f"[ERROR] Cancel failed: {e}")
        raise


def _cmd_update(args: argparse.Namespace) -> None:
    """Change the windows or players of a pending entry."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        member_ids = [int(m) for m in args.members.replace(",", ";").split(";") if m.strip()] if args.members else None
        entry = update_entry(
            session,
            args.entry,
            args.preferred,
            alternate_window=args.alternate,
            member_ids=member_ids,
            requested_time=args.time,
            settings=settings,
        )
        session.close()
        print(f"[OK] Entry {entry.id} updated: window {entry.preferred_window}, alternate {entry.alternate_window}")

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Update failed: {e}")
        raise


def _cmd_maintenance(args: argparse.Namespace) -> None:
    """Run monthly maintenance."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        scheduler = MaintenanceScheduler(session, settings=settings)
        if args.reclassify:
            count = scheduler.reclassify()
            print(f"[OK] Reclassified {count} speed profiles")
        else:
            result = scheduler.run(force=True) if args.force else scheduler.check_and_run()
            for step in result.steps:
                status = "skipped" if step.skipped else ("ok" if step.success else f"failed: {step.error}")
                print(f"[INFO] {step.maintenance_type}: {status} ({step.records_affected} records)")
            if result.noop:
                print(f"[OK] Maintenance for {result.month}: nothing to do")
            else:
                print(
                    f"[OK] Maintenance for {result.month}: {result.fairness_rows_created} fairness rows, "
                    f"{result.profiles_updated} speed profiles"
                )
        session.close()

    except Exception as e:
        session.close()
        print(f"[ERROR] Maintenance failed: {e}")
        raise


def _cmd_stats(args: argparse.Namespace) -> None:
    """Print dashboard statistics for a date."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        stats = compute_processing_stats(session, args.date)
        session.close()
        print(format_run_summary(stats))

    except Exception as e:
        session.close()
        print(f"[ERROR] Stats failed: {e}")
        raise


def _cmd_export(args: argparse.Namespace) -> None:
    """Export data from database to CSV."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        if args.results:
            if args.date is None:
                raise SystemExit("[ERROR] --date is required with --results")
            count = export_run_results_csv(session, args.results, args.date)
            print(f"[OK] Exported {count} entry results to {args.results}")

        if args.profiles:
            count = export_speed_profiles_csv(session, args.profiles)
            print(f"[OK] Exported {count} speed profiles to {args.profiles}")

        session.close()

    except Exception as e:
        session.close()
        print(f"[ERROR] Export failed: {e}")
        raise


def _cmd_algorithm(args: argparse.Namespace) -> None:
    """Show or replace the algorithm configuration."""
    settings = _settings(args)
    session = get_session(settings.database_url)

    try:
        if args.set:
            with open(args.set, "r", encoding="utf-8") as f:
                if args.set.endswith(".json"):
                    raw = json.load(f)
                else:
                    raw = yaml.safe_load(f) or {}
            current = load_algorithm_config(session).to_dict()
            current.update(raw)
            save_algorithm_config(session, AlgorithmConfig.from_dict(current), updated_by=args.by)
            print(f"[OK] Algorithm config updated from {args.set}")

        print(yaml.safe_dump(load_algorithm_config(session).to_dict(), sort_keys=False))
        session.close()

    except Exception as e:
        session.rollback()
        session.close()
        print(f"[ERROR] Algorithm config failed: {e}")
        raise


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(prog="teelottery", description="Golf club tee-time lottery")

    # Global options
    parser.add_argument("--db", help="Database URL (overrides database_url in the config file)")
    parser.add_argument("--config", help="Path to lottery config YAML/JSON")
    parser.add_argument("--log-level", default=None, help="Logging level (default: from config, INFO)")

    sub = parser.add_subparsers(dest="command", required=True)

    # init-db command
    init = sub.add_parser("init-db", help="Initialize database")
    init.set_defaults(func=_cmd_init_db)

    # import-csv command
    imp = sub.add_parser("import-csv", help="Import CSV data into database")
    imp.add_argument("--members", help="Path to members CSV")
    imp.add_argument("--blocks", help="Path to time blocks CSV")
    imp.add_argument("--restrictions", help="Path to restrictions CSV")
    imp.add_argument("--entries", help="Path to lottery entries CSV")
    imp.add_argument("--pace", help="Path to pace-of-play CSV")
    imp.set_defaults(func=_cmd_import_csv)

    # process command
    proc = sub.add_parser("process", help="Run the lottery for a date")
    proc.add_argument("--date", required=True, type=_parse_date, help="Lottery date (YYYY-MM-DD)")
    proc.add_argument("--admin", type=int, help="Member id of the admin running the lottery")
    proc.add_argument("--replay", action="store_true", help="Retract the existing run and process again")
    proc.set_defaults(func=_cmd_process)

    # finalize command
    fin = sub.add_parser("finalize", help="Finalize the lottery for a date")
    fin.add_argument("--date", required=True, type=_parse_date, help="Lottery date (YYYY-MM-DD)")
    fin.set_defaults(func=_cmd_finalize)

    # override command
    ovr = sub.add_parser("override", help="Move an assigned entry to another time block")
    ovr.add_argument("--entry", required=True, type=int, help="Entry id")
    ovr.add_argument("--block", required=True, type=int, help="Target time block id")
    ovr.add_argument("--admin", type=int, help="Member id of the admin")
    ovr.set_defaults(func=_cmd_override)

    # cancel command
    can = sub.add_parser("cancel", help="Cancel a pending entry")
    can.add_argument("--entry", required=True, type=int, help="Entry id")
    can.set_defaults(func=_cmd_cancel)

    # update command
    upd = sub.add_parser("update", help="Change the windows or players of a pending entry")
    upd.add_argument("--entry", required=True, type=int, help="Entry id")
    upd.add_argument("--preferred", required=True, type=int, help="Preferred window index")
    upd.add_argument("--alternate", type=int, help="Alternate window index (omit to clear)")
    upd.add_argument("--members", help="Player ids, e.g. '12;15;18' (organizer must be included)")
    upd.add_argument("--time", help="Requested start time HH:MM (omit to clear)")
    upd.set_defaults(func=_cmd_update)

    # maintenance command
    mnt = sub.add_parser("maintenance", help="Run monthly fairness reset and speed recalculation")
    mnt.add_argument("--force", action="store_true", help="Run even if already recorded this month")
    mnt.add_argument("--reclassify", action="store_true", help="Only re-apply speed thresholds")
    mnt.set_defaults(func=_cmd_maintenance)

    # stats command
    st = sub.add_parser("stats", help="Show lottery statistics for a date")
    st.add_argument("--date", required=True, type=_parse_date, help="Lottery date (YYYY-MM-DD)")
    st.set_defaults(func=_cmd_stats)

    # export command
    exp = sub.add_parser("export", help="Export data from database to CSV")
    exp.add_argument("--results", help="Path to export run results CSV")
    exp.add_argument("--date", type=_parse_date, help="Lottery date for --results")
    exp.add_argument("--profiles", help="Path to export speed profiles CSV")
    exp.set_defaults(func=_cmd_export)

    # algorithm-config command
    alg = sub.add_parser("algorithm-config", help="Show or update the algorithm configuration")
    alg.add_argument("--set", help="YAML/JSON file with the values to change")
    alg.add_argument("--by", help="Name recorded as updated_by")
    alg.set_defaults(func=_cmd_algorithm)

    args = parser.parse_args(argv)
    settings = load_config(args.config)
    setup_logging(args.log_level or settings.log_level)
    args.func(args)


if __name__ == "__main__":
    main()
