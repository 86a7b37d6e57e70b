from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from rostering.audit.store import SqliteAuditStore
from rostering.audit.tracker import AssignmentAuditTracker
from rostering.errors import SchedulingError
from rostering.io.csv_loader import load_coverage, load_history, load_roster, load_rules_file
from rostering.io.results_export import build_export, export_results
from rostering.models.rules import GenerationOptions, IndustryProfile, default_rules
from rostering.models.validated import validate_rules
from rostering.solver.engine import SchedulingEngine
from rostering.utils.logging_setup import setup_logging
from rostering.utils.structured_logging import configure_structlog


def _options(args: argparse.Namespace) -> GenerationOptions:
    return GenerationOptions(
        respect_preferences=not args.ignore_preferences,
        minimize_consecutive_nights=not args.allow_night_runs,
        balance_workload=not args.no_balance,
        avoid_dangerous_patterns=args.avoid_patterns,
        team_ids=args.team or None,
        deadline_seconds=args.deadline,
        parallel_analysis=args.parallel,
    )


def _rules(args: argparse.Namespace):
    if args.rules:
        return load_rules_file(args.rules)
    return validate_rules(default_rules(IndustryProfile(args.profile)))


def _summary(result) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "schedule_id": result.schedule_id,
        "status": result.status.value,
        "assignments": len(result.assignments),
        "coverage_rate": result.coverage_rate,
        "coverage_gaps": len(result.coverage_gaps),
        "generation_time_ms": result.generation_time_ms,
    }
    if result.fairness_metrics is not None:
        summary["fairness_score"] = result.fairness_metrics.fairness_score
        summary["gini"] = result.fairness_metrics.overall_gini
    if result.error is not None:
        summary["error"] = result.error.to_dict()
    return summary


def cmd_generate(args: argparse.Namespace) -> int:
    rules = _rules(args)
    employees = load_roster(args.roster)
    if args.history:
        load_history(args.history, employees)
    coverage = load_coverage(args.coverage)
    options = _options(args)

    tracker = AssignmentAuditTracker(SqliteAuditStore(Path(args.audit_db))) if args.audit_db else None
    engine = SchedulingEngine(rules, audit_tracker=tracker)
    result = engine.generate_schedule(
        args.schedule_id, args.tenant_id, args.start, args.end, employees, coverage, options=options
    )

    if args.export_dir:
        export_results(result, employees, rules, options, output_dir=Path(args.export_dir))

    if args.json_out:
        print(json.dumps(build_export(result, employees, rules, options), ensure_ascii=False, indent=2))
    else:
        print("Summary:")
        for k, v in _summary(result).items():
            print(f" - {k}: {v}")
        if result.success:
            print(result.to_roster_frame().to_string())
        for gap in result.coverage_gaps:
            print(f"GAP {gap.date.isoformat()} {gap.shift_type.value}: {gap.actual_filled}/{gap.required_count}")
    return 0 if result.success else 1


def cmd_validate_rules(args: argparse.Namespace) -> int:
    try:
        rules = load_rules_file(args.path)
    except SchedulingError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False, indent=2), file=sys.stderr)
        return 2
    print(json.dumps(rules.to_dict(), ensure_ascii=False, indent=2))
    return 0


def cmd_reasons(args: argparse.Namespace) -> int:
    tracker = AssignmentAuditTracker(SqliteAuditStore(Path(args.audit_db)))
    records = tracker.get_employee_assignment_reasons(
        args.employee_id, schedule_id=args.schedule_id, start_date=args.start, end_date=args.end
    )
    print(json.dumps(records, ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rostering", description="Shift scheduling engine")
    p.add_argument("-v", "--verbose", action="count", default=0)
    sub = p.add_subparsers(dest="command", required=True)

    g = sub.add_parser("generate", help="Generate a schedule from CSV inputs")
    g.add_argument("--roster", required=True, help="Employee CSV")
    g.add_argument("--coverage", required=True, help="Coverage requirements CSV")
    g.add_argument("--history", help="Committed shift history CSV (employee_id,date,shift_type)")
    g.add_argument("--start", required=True, help="First date (YYYY-MM-DD)")
    g.add_argument("--end", required=True, help="Last date (YYYY-MM-DD)")
    g.add_argument("--schedule-id", default="schedule-1")
    g.add_argument("--tenant-id", default="default")
    g.add_argument("--profile", choices=[x.value for x in IndustryProfile], default="general")
    g.add_argument("--rules", help="Rule set JSON (overrides --profile)")
    g.add_argument("--team", action="append", help="Restrict to team id (repeatable)")
    g.add_argument("--ignore-preferences", action="store_true")
    g.add_argument("--allow-night-runs", action="store_true", help="Do not cap consecutive nights")
    g.add_argument("--no-balance", action="store_true", help="Disable workload balancing")
    g.add_argument("--avoid-patterns", dest="avoid_patterns", action="store_true", default=None)
    g.add_argument("--allow-patterns", dest="avoid_patterns", action="store_false")
    g.add_argument("--deadline", type=float, default=None, help="Deadline in seconds")
    g.add_argument("--parallel", action="store_true", help="Run post-pass analyses concurrently")
    g.add_argument("--audit-db", help="SQLite audit database")
    g.add_argument("--json", dest="json_out", action="store_true", help="JSON output")
    g.add_argument("--export-dir", help="Also write the JSON export to this directory")
    g.set_defaults(func=cmd_generate)

    v = sub.add_parser("validate-rules", help="Validate a rule set JSON file")
    v.add_argument("path")
    v.set_defaults(func=cmd_validate_rules)

    r = sub.add_parser("reasons", help="Show audited reasons for an employee")
    r.add_argument("--audit-db", required=True)
    r.add_argument("--employee-id", required=True)
    r.add_argument("--schedule-id")
    r.add_argument("--start")
    r.add_argument("--end")
    r.set_defaults(func=cmd_reasons)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    level = "DEBUG" if args.verbose > 1 else "INFO" if args.verbose else "WARNING"
    setup_logging(level=level, log_file=None, stream=sys.stderr)
    configure_structlog(level=logging.INFO if args.verbose else logging.WARNING, file=sys.stderr)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
