"""
Per-country survey configuration.

Every country-specific delta lives in COUNTRIES: raw column names, the
membership rule used to build balanced panels, the industry grouping policy,
the ISCO detail available in the raw occupation code and the code lists used
by the recodes. The mapper, panel constructor and converter are generic and
read only from a CountryConfig.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

from src.exceptions import ConfigurationError


class EmploymentStatus(IntEnum):
    INACTIVE = 1
    UNEMPLOYED = 2
    EMPLOYED = 3


class EmploymentType(IntEnum):
    UNPAID = 1
    SELF_EMPLOYED = 2
    SALARIED = 3
    EMPLOYER = 4


class SkillLevel(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class Sector(IntEnum):
    AGRICULTURE = 1
    INDUSTRY = 2
    SERVICES = 3


class MembershipRule(Enum):
    """How an individual's presence in a survey year is decided."""

    REDERIVED = "rederived"  # Rule A: any row for (individual_id, year)
    PRECOMPUTED = "precomputed"  # Rule B: upstream per-year presence flag
    DIAGNOSTIC_FLAG = "diagnostic_flag"  # Rule C: per-year-pair panel flag, heads only


class SectorVariant(Enum):
    """Grouping of 1-digit industry codes. The two differ only in code 5 (utilities)."""

    UTILITIES_IN_INDUSTRY = "utilities_in_industry"
    UTILITIES_IN_SERVICES = "utilities_in_services"


# 1-digit industry codes: 1 agriculture, 2 mining, 3 manufacturing,
# 4 construction, 5 utilities, 6 commerce, 7 transport and communications,
# 8 finance and business services, 9 public administration, 10 other services.
SECTOR_GROUPS: dict[SectorVariant, dict[int, Sector]] = {
    SectorVariant.UTILITIES_IN_INDUSTRY: {
        1: Sector.AGRICULTURE,
        2: Sector.INDUSTRY,
        3: Sector.INDUSTRY,
        4: Sector.INDUSTRY,
        5: Sector.INDUSTRY,
        6: Sector.SERVICES,
        7: Sector.SERVICES,
        8: Sector.SERVICES,
        9: Sector.SERVICES,
        10: Sector.SERVICES,
    },
    SectorVariant.UTILITIES_IN_SERVICES: {
        1: Sector.AGRICULTURE,
        2: Sector.INDUSTRY,
        3: Sector.INDUSTRY,
        4: Sector.INDUSTRY,
        5: Sector.SERVICES,
        6: Sector.SERVICES,
        7: Sector.SERVICES,
        8: Sector.SERVICES,
        9: Sector.SERVICES,
        10: Sector.SERVICES,
    },
}

# ISCO-08 major group -> skill level. Group 0 (armed forces) has no skill level.
SKILL_BY_MAJOR_GROUP: dict[int, SkillLevel] = {
    1: SkillLevel.HIGH,
    2: SkillLevel.HIGH,
    3: SkillLevel.HIGH,
    4: SkillLevel.MEDIUM,
    5: SkillLevel.MEDIUM,
    6: SkillLevel.MEDIUM,
    7: SkillLevel.MEDIUM,
    8: SkillLevel.MEDIUM,
    9: SkillLevel.LOW,
}

# Intermediate source roles. Raw survey columns are renamed to these before
# the canonical fields are derived.
DEFAULT_COLUMNS: dict[str, str] = {
    "hhid": "hhid",
    "pid": "pid",
    "year": "year",
    "weight": "weight",
    "welfare": "welfare",
    "welfare_ppp": "welfare_ppp",
    "lstatus": "lstatus",
    "empstat": "empstat",
    "occup_isco": "occup",
    "industrycat10": "industry",
    "contract": "contract",
    "socialsec": "socialsec",
    "healthins": "healthins",
    "age": "age",
    "male": "male",
    "educat7": "educat7",
    "urban": "urban",
    "relationharm": "relationharm",
    "wage_hourly": "hourly_wage",
    "whours": "whours",
    "labor_income_monthly": "labor_income",
}

# Employment-type codes in the harmonized labor-database convention and in the
# SEDLAC "relab" convention.
GLD_EMPSTAT_CODES: dict[int, EmploymentType] = {
    1: EmploymentType.SALARIED,
    2: EmploymentType.UNPAID,
    3: EmploymentType.EMPLOYER,
    4: EmploymentType.SELF_EMPLOYED,
}
SEDLAC_RELAB_CODES: dict[int, EmploymentType] = {
    1: EmploymentType.EMPLOYER,
    2: EmploymentType.SALARIED,
    3: EmploymentType.SELF_EMPLOYED,
    4: EmploymentType.UNPAID,
}

LSTATUS_CODES: dict[int, EmploymentStatus] = {
    1: EmploymentStatus.EMPLOYED,
    2: EmploymentStatus.UNEMPLOYED,
    3: EmploymentStatus.INACTIVE,
}


def _columns(**renamed: str) -> dict[str, str]:
    """Build a raw -> role mapping from the default one, renaming selected roles.

    Keyword arguments are ``role=raw_column_name``.
    """
    roles = {role: raw for raw, role in DEFAULT_COLUMNS.items()}
    roles.update(renamed)
    return {raw: role for role, raw in roles.items()}


@dataclass(frozen=True)
class CountryConfig:
    """Survey conventions for one country."""

    code: str
    name: str
    survey: str
    columns: dict[str, str]
    membership_rule: MembershipRule
    sector_variant: SectorVariant
    isco_digits: int = 4
    employment_type_codes: dict[int, EmploymentType] = field(
        default_factory=lambda: dict(GLD_EMPSTAT_CODES)
    )
    employment_status_codes: dict[int, EmploymentStatus] = field(
        default_factory=lambda: dict(LSTATUS_CODES)
    )
    head_code: int = 1
    spouse_code: int = 2
    male_code: int = 1
    # Population filters for precomputed membership; diagnostic-flag panels always restrict to heads
    household_coherence_filter: bool = False
    heads_only: bool = False
    alt_cpi_primary: bool = False
    collection_months: tuple[int, ...] = tuple(range(1, 13))

    def __post_init__(self):
        if self.isco_digits not in (2, 3, 4):
            raise ConfigurationError(
                f"{self.code}: isco_digits must be 2, 3 or 4, got {self.isco_digits}"
            )

    @property
    def sector_groups(self) -> dict[int, Sector]:
        return SECTOR_GROUPS[self.sector_variant]

    def raw_column(self, role: str) -> str | None:
        """Raw column name feeding a source role."""
        for raw, mapped in self.columns.items():
            if mapped == role:
                return raw
        return None


COUNTRIES: dict[str, CountryConfig] = {
    "ARG": CountryConfig(
        code="ARG",
        name="Argentina",
        survey="EPH",
        columns=_columns(
            hhid="CODUSU_HOGAR",
            pid="CODUSU_PERSONA",
            year="ANO4",
            weight="PONDERA",
            empstat="relab",
            present_in_year="presente",
            coherent_household="hogar_coherente",
        ),
        membership_rule=MembershipRule.PRECOMPUTED,
        sector_variant=SectorVariant.UTILITIES_IN_SERVICES,
        isco_digits=2,
        employment_type_codes=dict(SEDLAC_RELAB_CODES),
        household_coherence_filter=True,
        alt_cpi_primary=True,
    ),
    "BRA": CountryConfig(
        code="BRA",
        name="Brazil",
        survey="PNADC",
        columns=_columns(
            hhid="id_dom",
            pid="id_pes",
            year="Ano",
            weight="V1028",
            present_in_year="in_visit_pair",
        ),
        membership_rule=MembershipRule.PRECOMPUTED,
        sector_variant=SectorVariant.UTILITIES_IN_INDUSTRY,
        isco_digits=4,
    ),
    "CHL": CountryConfig(
        code="CHL",
        name="Chile",
        survey="CASEN Panel",
        columns=_columns(
            hhid="folio",
            pid="id_persona",
            weight="expr",
            coherent_household="hogar_coherente",
        ),
        membership_rule=MembershipRule.DIAGNOSTIC_FLAG,
        sector_variant=SectorVariant.UTILITIES_IN_SERVICES,
        isco_digits=2,
    ),
    "ECU": CountryConfig(
        code="ECU",
        name="Ecuador",
        survey="ENEMDU",
        columns=_columns(hhid="id_hogar", pid="id_per", weight="fexp"),
        membership_rule=MembershipRule.REDERIVED,
        sector_variant=SectorVariant.UTILITIES_IN_SERVICES,
        isco_digits=4,
    ),
    "MEX": CountryConfig(
        code="MEX",
        name="Mexico",
        survey="ENOE",
        columns=_columns(hhid="folio_hogar", pid="folio_persona", weight="fac_tri"),
        membership_rule=MembershipRule.REDERIVED,
        sector_variant=SectorVariant.UTILITIES_IN_INDUSTRY,
        isco_digits=3,
    ),
    "PER": CountryConfig(
        code="PER",
        name="Peru",
        survey="ENAHO Panel",
        columns=_columns(hhid="hogar", pid="numper", year="anio", weight="facpanel"),
        membership_rule=MembershipRule.REDERIVED,
        sector_variant=SectorVariant.UTILITIES_IN_INDUSTRY,
        isco_digits=4,
    ),
}


def get_country(code: str) -> CountryConfig:
    """Look up a country configuration by ISO3 code."""
    try:
        return COUNTRIES[code.upper()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown country '{code}'. Available: {', '.join(sorted(COUNTRIES))}"
        ) from None
