"""
Survey schema mapping and reference-data modules.
"""

from src.data.countries import (
    COUNTRIES,
    CountryConfig,
    EmploymentStatus,
    EmploymentType,
    MembershipRule,
    Sector,
    SectorVariant,
    SkillLevel,
    get_country,
)
from src.data.cpi import CPIReference
from src.data.data_lineage import DataLineageTracker, FieldStatus
from src.data.schema_mapper import CANONICAL_COLUMNS, SchemaMapper, map_country

__all__ = [
    "COUNTRIES",
    "CountryConfig",
    "EmploymentStatus",
    "EmploymentType",
    "MembershipRule",
    "Sector",
    "SectorVariant",
    "SkillLevel",
    "get_country",
    "CPIReference",
    "DataLineageTracker",
    "FieldStatus",
    "CANONICAL_COLUMNS",
    "SchemaMapper",
    "map_country",
]
