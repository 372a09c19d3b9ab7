"""
Configuration for reference data tables
Defines each lookup table's model, optional columns and foreign-key CSV columns
"""
from typing import Dict, List, Optional, Tuple, Type
from enum import Enum
from constituency.db.database import (
    Base,
    Cawangan,
    District,
    Dun,
    Gender,
    Locality,
    Parliament,
    PollingStation,
    Race,
    Religion,
    Village,
    Zone,
)


class ReferenceTable(str, Enum):
    """Reference data tables"""
    GENDERS = "genders"
    RELIGIONS = "religions"
    RACES = "races"
    DISTRICTS = "districts"
    PARLIAMENTS = "parliaments"
    LOCALITIES = "localities"
    POLLING_STATIONS = "polling_stations"
    DUNS = "duns"
    ZONES = "zones"
    CAWANGAN = "cawangan"
    VILLAGES = "villages"


class ForeignKeyColumn:
    """A CSV column whose value names a row in another reference table"""

    def __init__(self, csv_column: str, field: str, target: ReferenceTable, label: Optional[str] = None):
        self.csv_column = csv_column  # e.g. "Parliament"
        self.field = field  # e.g. "parliament_id"
        self.target = target
        self.label = label or csv_column  # used in "not found" errors


class ReferenceTableConfig:
    """Configuration for one reference table"""

    def __init__(
        self,
        table: ReferenceTable,
        model: Type[Base],
        has_is_active: bool = True,
        foreign_keys: Optional[List[ForeignKeyColumn]] = None,
        text_columns: Optional[List[Tuple[str, str]]] = None,
        spr_fields: Optional[List[str]] = None
    ):
        self.table = table
        self.model = model
        self.has_is_active = has_is_active
        self.foreign_keys = foreign_keys or []
        self.text_columns = text_columns or []  # (CSV column, model field) pairs
        self.spr_fields = spr_fields or []  # spr_voters columns read when populating

    @property
    def supports_spr_population(self) -> bool:
        return bool(self.spr_fields)

    @property
    def csv_header(self) -> List[str]:
        header = ["Name", "Code", "Description", "IsActive"]
        header.extend(fk.csv_column for fk in self.foreign_keys)
        header.extend(column for column, _ in self.text_columns)
        return header

    @property
    def referenced_tables(self) -> List[ReferenceTable]:
        return list(dict.fromkeys(fk.target for fk in self.foreign_keys))


REFERENCE_TABLE_CONFIGS: Dict[ReferenceTable, ReferenceTableConfig] = {
    ReferenceTable.GENDERS: ReferenceTableConfig(
        table=ReferenceTable.GENDERS,
        model=Gender,
        spr_fields=["jantina"],
    ),
    ReferenceTable.RELIGIONS: ReferenceTableConfig(
        table=ReferenceTable.RELIGIONS,
        model=Religion,
        spr_fields=["agama"],
    ),
    ReferenceTable.RACES: ReferenceTableConfig(
        table=ReferenceTable.RACES,
        model=Race,
        spr_fields=["bangsa"],
    ),
    ReferenceTable.DISTRICTS: ReferenceTableConfig(
        table=ReferenceTable.DISTRICTS,
        model=District,
        spr_fields=["daerah"],
    ),
    ReferenceTable.PARLIAMENTS: ReferenceTableConfig(
        table=ReferenceTable.PARLIAMENTS,
        model=Parliament,
        spr_fields=["nama_parlimen"],
    ),
    ReferenceTable.DUNS: ReferenceTableConfig(
        table=ReferenceTable.DUNS,
        model=Dun,
        has_is_active=False,
        foreign_keys=[
            ForeignKeyColumn("Parliament", "parliament_id", ReferenceTable.PARLIAMENTS),
        ],
        spr_fields=["nama_dun", "nama_parlimen"],
    ),
    ReferenceTable.LOCALITIES: ReferenceTableConfig(
        table=ReferenceTable.LOCALITIES,
        model=Locality,
        foreign_keys=[
            ForeignKeyColumn("Parliament", "parliament_id", ReferenceTable.PARLIAMENTS),
            ForeignKeyColumn("DUN", "dun_id", ReferenceTable.DUNS),
            ForeignKeyColumn("District", "district_id", ReferenceTable.DISTRICTS),
        ],
        spr_fields=["nama_lokaliti", "kod_lokaliti", "nama_parlimen", "nama_dun", "daerah"],
    ),
    ReferenceTable.POLLING_STATIONS: ReferenceTableConfig(
        table=ReferenceTable.POLLING_STATIONS,
        model=PollingStation,
        foreign_keys=[
            ForeignKeyColumn("Locality", "locality_id", ReferenceTable.LOCALITIES),
        ],
        text_columns=[("Address", "address")],
        spr_fields=["nama_tm", "nama_lokaliti", "alamat"],
    ),
    ReferenceTable.ZONES: ReferenceTableConfig(
        table=ReferenceTable.ZONES,
        model=Zone,
        foreign_keys=[
            ForeignKeyColumn("DUN", "dun_id", ReferenceTable.DUNS),
            ForeignKeyColumn("PollingStation", "polling_station_id", ReferenceTable.POLLING_STATIONS,
                             label="Polling station"),
        ],
    ),
    ReferenceTable.CAWANGAN: ReferenceTableConfig(
        table=ReferenceTable.CAWANGAN,
        model=Cawangan,
        foreign_keys=[
            ForeignKeyColumn("Zone", "zone_id", ReferenceTable.ZONES),
        ],
    ),
    ReferenceTable.VILLAGES: ReferenceTableConfig(
        table=ReferenceTable.VILLAGES,
        model=Village,
        foreign_keys=[
            ForeignKeyColumn("Zone", "zone_id", ReferenceTable.ZONES),
            ForeignKeyColumn("Cawangan", "cawangan_id", ReferenceTable.CAWANGAN),
        ],
    ),
}


def get_table_config(table: ReferenceTable) -> ReferenceTableConfig:
    return REFERENCE_TABLE_CONFIGS[ReferenceTable(table)]
