"""I/O utilities for CSV import/export."""

from .export_csv import export_run_results_csv, export_speed_profiles_csv
from .import_csv import (
    import_entries_csv,
    import_members_csv,
    import_pace_csv,
    import_restrictions_csv,
    import_time_blocks_csv,
)

__all__ = [
    "import_members_csv",
    "import_time_blocks_csv",
    "import_entries_csv",
    "import_pace_csv",
    "import_restrictions_csv",
    "export_run_results_csv",
    "export_speed_profiles_csv",
]
