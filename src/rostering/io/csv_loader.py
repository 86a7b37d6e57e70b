"""CSV/JSON loading for rosters, shift history, coverage and rules."""
import json
from pathlib import Path
from typing import Dict, List, Union

import pandas as pd

from rostering.models.coverage import CoverageRequirement
from rostering.models.employee import Employee, ShiftRecord
from rostering.models.rules import RuleSet
from rostering.models.validated import load_rules
from rostering.utils.logging_setup import get_logger

logger = get_logger("rostering.io.csv_loader")

Source = Union[str, Path, pd.DataFrame]

LIST_SEPARATOR = ";"

ROSTER_COLUMNS = [
    "id", "name", "role", "hierarchy_level", "experience_years", "team_id",
    "is_active", "skills", "preference_pattern", "avoid_weekdays", "unavailable_dates",
]


def _safe_int(value, default: int = 0) -> int:
    """Safely convert value to int."""
    try:
        return int(float(value))
    except (ValueError, TypeError):
        return default


def _safe_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def _safe_bool(value, default: bool = False) -> bool:
    """Safely convert value to bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if not value.strip():
            return default
        return value.strip().lower() in ("1", "true", "yes", "y")
    return default


def _split(value) -> List[str]:
    text = str(value or "").strip()
    if not text:
        return []
    return [part.strip() for part in text.split(LIST_SEPARATOR) if part.strip()]


def _frame(source: Source) -> pd.DataFrame:
    if isinstance(source, pd.DataFrame):
        df = source.copy()
    else:
        df = pd.read_csv(source, dtype=str)
    return df.fillna("")


def load_roster(source: Source) -> List[Employee]:
    """
    Load employees from CSV file or DataFrame.

    List columns (skills, preference_pattern, avoid_weekdays,
    unavailable_dates) are ``;``-separated.

    Raises:
        ValueError: missing ``id`` column, or a malformed shift/date value
    """
    df = _frame(source)
    if "id" not in df.columns:
        raise ValueError("Roster CSV must have an 'id' column")

    employees = []
    for _, row in df.iterrows():
        emp_id = str(row["id"]).strip()
        if not emp_id:
            continue
        employees.append(Employee(
            id=emp_id,
            name=str(row.get("name", "")),
            role=str(row.get("role", "")).strip(),
            hierarchy_level=max(1, _safe_int(row.get("hierarchy_level"), 1)),
            experience_years=_safe_float(row.get("experience_years"), 0.0),
            team_id=str(row.get("team_id", "")).strip(),
            is_active=_safe_bool(row.get("is_active", ""), True),
            skills=_split(row.get("skills")),
            preference_pattern=_split(row.get("preference_pattern")),
            avoid_weekdays={_safe_int(d) for d in _split(row.get("avoid_weekdays"))},
            unavailable_dates=set(_split(row.get("unavailable_dates"))),
        ))

    logger.debug(f"Loaded {len(employees)} employees")
    return employees


def load_history(source: Source, employees: List[Employee]) -> List[Employee]:
    """
    Attach committed shifts (columns employee_id, date, shift_type) to employees.

    Rows for unknown employees are skipped with a warning.
    """
    df = _frame(source)
    by_id: Dict[str, Employee] = {e.id: e for e in employees}
    skipped = 0
    for _, row in df.iterrows():
        emp = by_id.get(str(row["employee_id"]).strip())
        if emp is None:
            skipped += 1
            continue
        emp.history.append(ShiftRecord.from_dict({"date": row["date"], "shift_type": row["shift_type"]}))
    if skipped:
        logger.warning(f"Skipped {skipped} history rows for unknown employees")
    return employees


def load_coverage(source: Source) -> List[CoverageRequirement]:
    """Load coverage requirements (date, shift_type, required_count, ...)."""
    df = _frame(source)
    missing = {"date", "shift_type"} - set(df.columns)
    if missing:
        raise ValueError(f"Coverage CSV is missing columns: {sorted(missing)}")

    requirements = []
    for _, row in df.iterrows():
        requirements.append(CoverageRequirement.from_dict({
            "date": str(row["date"]).strip(),
            "shift_type": str(row["shift_type"]).strip(),
            "required_count": _safe_int(row.get("required_count"), 1),
            "minimum_experience_level": str(row.get("minimum_experience_level", "")).strip() or None,
            "reference_level": str(row.get("reference_level", "")).strip() or None,
        }))
    logger.debug(f"Loaded {len(requirements)} coverage requirements")
    return requirements


def load_rules_file(path: Union[str, Path]) -> RuleSet:
    """
    Load and validate a JSON rule set.

    Raises:
        ConfigValidation: if the values are out of range
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return load_rules(data)


def save_roster(employees: List[Employee], path: Union[str, Path]) -> None:
    """Save employees (without history) to CSV."""
    roster_to_dataframe(employees).to_csv(path, index=False)


def roster_to_dataframe(employees: List[Employee]) -> pd.DataFrame:
    """Employees as a flat DataFrame with ``;``-joined list columns."""
    rows = []
    for e in employees:
        d = e.to_dict()
        rows.append({
            "id": d["id"],
            "name": d["name"],
            "role": d["role"],
            "hierarchy_level": d["hierarchy_level"],
            "experience_years": d["experience_years"],
            "team_id": d["team_id"],
            "is_active": int(d["is_active"]),
            "skills": LIST_SEPARATOR.join(d["skills"]),
            "preference_pattern": LIST_SEPARATOR.join(d["preference_pattern"]),
            "avoid_weekdays": LIST_SEPARATOR.join(str(x) for x in d["avoid_weekdays"]),
            "unavailable_dates": LIST_SEPARATOR.join(d["unavailable_dates"]),
        })
    return pd.DataFrame(rows, columns=ROSTER_COLUMNS)
