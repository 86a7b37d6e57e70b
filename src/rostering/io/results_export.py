"""
Results Export for Analysis
============================
Exports a generation result to JSON for review or downstream scripts.
"""
import json
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rostering.audit.tracker import sanitize_details
from rostering.models.employee import Employee
from rostering.models.rules import GenerationOptions, RuleSet
from rostering.models.schedule import GenerationResult
from rostering.solver.stats import calculate_employee_stats
from rostering.utils.logging_setup import get_logger

logger = get_logger("rostering.io.results_export")

RESULTS_DIR = Path("results")


def build_export(
    result: GenerationResult,
    employees: List[Employee],
    rules: RuleSet,
    options: Optional[GenerationOptions] = None,
    run_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the export payload.

    Reason details are sanitised the same way as the audit read path.
    """
    payload = result.to_dict()
    for key in ("assignments", "partial_assignments"):
        for a in payload[key]:
            for reason in a["reasons"]:
                reason["details"] = sanitize_details(reason["details"])

    stats = calculate_employee_stats(result, employees)
    return {
        "meta": {
            "timestamp": datetime.now().isoformat(),
            "run_name": run_name or result.schedule_id,
        },
        "rules": rules.to_dict(),
        "options": (options or GenerationOptions()).to_dict(),
        "result": payload,
        "employee_stats": [asdict(s) for s in stats],
    }


def export_results(
    result: GenerationResult,
    employees: List[Employee],
    rules: RuleSet,
    options: Optional[GenerationOptions] = None,
    run_name: Optional[str] = None,
    output_dir: Optional[Path] = None,
) -> Path:
    """
    Export a result to ``<output_dir>/<run_name>.json``.

    Returns:
        Path to the exported JSON file
    """
    output_dir = Path(output_dir or RESULTS_DIR)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_name = run_name or f"{result.schedule_id}_{timestamp}"
    output_path = output_dir / f"{run_name}.json"

    payload = build_export(result, employees, rules, options, run_name)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)

    logger.info(f"Results exported to {output_path}")
    return output_path
