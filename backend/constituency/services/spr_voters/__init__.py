"""
SPR voter import, export, matching and version management
"""
from .importer import import_voters_chunk, import_voters_from_csv
from .matcher import match_voters_with_households, normalize_ic
from .exporter import export_voters_to_csv
from .versions import create_version, list_versions, get_version, count_voters

__all__ = [
    "import_voters_chunk",
    "import_voters_from_csv",
    "match_voters_with_households",
    "normalize_ic",
    "export_voters_to_csv",
    "create_version",
    "list_versions",
    "get_version",
    "count_voters",
]
