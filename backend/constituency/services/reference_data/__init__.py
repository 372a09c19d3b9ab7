"""
Reference data import, export and SPR-derived population
"""
from .config import ReferenceTable, REFERENCE_TABLE_CONFIGS, get_table_config
from .importer import import_reference_data_from_csv
from .exporter import export_reference_data_to_csv
from .populator import populate_reference_data_from_spr, split_parliament

__all__ = [
    "ReferenceTable",
    "REFERENCE_TABLE_CONFIGS",
    "get_table_config",
    "import_reference_data_from_csv",
    "export_reference_data_to_csv",
    "populate_reference_data_from_spr",
    "split_parliament",
]
