# rostering/io - Input/output handling
from .csv_loader import (
    load_coverage,
    load_history,
    load_roster,
    load_rules_file,
    roster_to_dataframe,
    save_roster,
)
from .results_export import build_export, export_results

__all__ = [
    "load_roster", "load_history", "load_coverage", "load_rules_file",
    "save_roster", "roster_to_dataframe",
    "build_export", "export_results",
]
