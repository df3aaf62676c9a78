"""
Schema mapping from raw country surveys to the canonical person-year table.

Raw columns are first renamed to source roles through the country's column
table, then each canonical field is built once by a single derivation whose
inputs are declared up front. A derivation whose inputs are absent is skipped
(its outputs are left missing and the skip is recorded); only the identifier,
weight and employment derivations are fatal when their inputs are absent.
"""

import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np
import pandas as pd

from src.data.countries import (
    CountryConfig,
    EmploymentStatus,
    EmploymentType,
    SKILL_BY_MAJOR_GROUP,
)
from src.data.data_lineage import DataLineageTracker, FieldStatus
from src.exceptions import MissingRequiredFieldError

logger = logging.getLogger(__name__)

STAGE = "mapping"

# 2-digit ISCO codes 01-03 are armed-forces subgroups, stored numerically as 1-3.
ARMED_FORCES_SUBCODES = (1, 2, 3)
AGE_CAP = 100

# Roles carried through untouched when the country provides them.
PASSTHROUGH_ROLES = ("present_in_year", "coherent_household")
PANEL_FLAG_PREFIX = "panel_flag_"

# Source role -> canonical field that cannot be built without it.
REQUIRED_ROLES = {
    "hhid": "household_id",
    "pid": "individual_id",
    "year": "year",
    "weight": "individual_weight",
    "lstatus": "employment_status",
    "empstat": "employment_type",
}

CANONICAL_COLUMNS = [
    "country_code",
    "household_id",
    "individual_id",
    "year",
    "wave",
    "individual_weight",
    "household_weight",
    "welfare_ppp",
    "welfare_nominal",
    "employed",
    "employment_status",
    "employment_type",
    "occupation_code_1d",
    "occupation_code_2d",
    "occupation_code_3d",
    "occupation_code_4d",
    "skill_level",
    "sector",
    "contract",
    "pension_contribution",
    "health_contribution",
    "age",
    "female",
    "education_7cat",
    "urban",
    "head",
    "spouse",
    "other_member",
    "hourly_wage_local",
    "weekly_hours",
    "monthly_labor_income_local",
]


@dataclass(frozen=True)
class Derivation:
    """One canonical field (or group of fields) and the inputs it needs."""

    outputs: tuple[str, ...]
    inputs: tuple[str, ...]
    build: Callable[[pd.DataFrame], dict[str, pd.Series]]
    required: bool = False


def _numeric(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series, errors="coerce")


def _flag(values: pd.Series, true_code: int = 1) -> pd.Series:
    """Nullable boolean from a coded indicator, missing where the source is."""
    numeric = _numeric(values)
    return (numeric == true_code).astype("boolean").where(numeric.notna())


def occupation_levels(raw: pd.Series, isco_digits: int) -> dict[str, pd.Series]:
    """
    Split a raw ISCO code into the 1- to 4-digit hierarchy.

    Args:
        raw: Occupation codes as delivered (numeric or numeric strings)
        isco_digits: Number of digits the raw code carries (2, 3 or 4)

    Returns:
        Dict of Int64 series keyed by canonical column name. Levels finer
        than ``isco_digits`` are missing.
    """
    code = np.floor(_numeric(raw))
    code = code.where(code >= 0)
    missing = pd.Series(np.nan, index=raw.index)

    if isco_digits == 4:
        occ4, occ3, occ2 = code, code // 10, code // 100
    elif isco_digits == 3:
        occ4, occ3, occ2 = missing, code, code // 10
    else:
        occ4, occ3, occ2 = missing, missing, code

    occ1 = (occ2 // 10).where(~occ2.isin(ARMED_FORCES_SUBCODES), 0)
    occ1 = occ1.where(occ2.notna())

    return {
        "occupation_code_1d": occ1.astype("Int64"),
        "occupation_code_2d": occ2.astype("Int64"),
        "occupation_code_3d": occ3.astype("Int64"),
        "occupation_code_4d": occ4.astype("Int64"),
    }


def skill_from_major_group(major_group: pd.Series) -> pd.Series:
    """ISCO major group -> skill level. Armed forces (0) and unknown stay missing."""
    lookup = {group: int(level) for group, level in SKILL_BY_MAJOR_GROUP.items()}
    return _numeric(major_group).astype("float64").map(lookup).astype("Int64")


class SchemaMapper:
    """Maps one country's raw survey table to canonical person-year records."""

    def __init__(self, country: CountryConfig, tracker: DataLineageTracker | None = None):
        self.country = country
        self.tracker = tracker or DataLineageTracker(country.code)
        self.derivations = self._derivations()

    def _derivations(self) -> list[Derivation]:
        c = self.country
        return [
            Derivation(("household_id",), ("hhid",), lambda df: {"household_id": df["hhid"]}, True),
            Derivation(("individual_id",), ("pid",), lambda df: {"individual_id": df["pid"]}, True),
            Derivation(("year",), ("year",), lambda df: {"year": _numeric(df["year"]).astype("Int64")}, True),
            Derivation(("wave",), ("year",), self._wave, True),
            Derivation(
                ("individual_weight",),
                ("weight",),
                lambda df: {"individual_weight": _numeric(df["weight"]).astype(float)},
                True,
            ),
            Derivation(("employment_status", "employed"), ("lstatus",), self._employment_status, True),
            Derivation(("employment_type",), ("empstat", "employment_status"), self._employment_type, True),
            Derivation(("welfare_nominal",), ("welfare",), lambda df: {"welfare_nominal": _numeric(df["welfare"])}),
            Derivation(("welfare_ppp",), ("welfare_ppp",), lambda df: {"welfare_ppp": _numeric(df["welfare_ppp"])}),
            Derivation(
                ("occupation_code_1d", "occupation_code_2d", "occupation_code_3d", "occupation_code_4d"),
                ("occup",),
                lambda df: occupation_levels(df["occup"], c.isco_digits),
            ),
            Derivation(
                ("skill_level",),
                ("occupation_code_1d",),
                lambda df: {"skill_level": skill_from_major_group(df["occupation_code_1d"])},
            ),
            Derivation(("sector",), ("industry",), self._sector),
            Derivation(("contract",), ("contract", "employment_type"), self._formality("contract", "contract")),
            Derivation(
                ("pension_contribution",),
                ("socialsec", "employment_type"),
                self._formality("socialsec", "pension_contribution"),
            ),
            Derivation(
                ("health_contribution",),
                ("healthins", "employment_type"),
                self._formality("healthins", "health_contribution"),
            ),
            Derivation(("age",), ("age",), lambda df: {"age": _numeric(df["age"]).clip(upper=AGE_CAP)}),
            Derivation(("female",), ("male",), self._female),
            Derivation(("education_7cat",), ("educat7",), self._education),
            Derivation(("urban",), ("urban",), lambda df: {"urban": _flag(df["urban"])}),
            Derivation(("head", "spouse", "other_member"), ("relationharm",), self._relationship),
            Derivation(("household_weight",), ("individual_weight", "head", "household_id", "year"), self._household_weight),
            Derivation(
                ("hourly_wage_local",),
                ("hourly_wage",),
                lambda df: {"hourly_wage_local": _numeric(df["hourly_wage"])},
            ),
            Derivation(("weekly_hours",), ("whours",), lambda df: {"weekly_hours": _numeric(df["whours"])}),
            Derivation(
                ("monthly_labor_income_local",),
                ("labor_income",),
                lambda df: {"monthly_labor_income_local": _numeric(df["labor_income"])},
            ),
        ]

    def check_required(self, raw: pd.DataFrame) -> None:
        """Fail fast when a required identifier, weight or employment column is absent."""
        present = set(raw.columns)
        for role, field_name in REQUIRED_ROLES.items():
            raw_name = self.country.raw_column(role) or role
            if raw_name not in present:
                raise MissingRequiredFieldError(field_name, [raw_name], self.country.code)

    def map(self, raw: pd.DataFrame) -> pd.DataFrame:
        """
        Build canonical person-year records.

        Args:
            raw: One country's raw survey table, one row per person-year

        Returns:
            Canonical table with CANONICAL_COLUMNS plus any membership
            indicators the country provides
        """
        self.check_required(raw)

        keep = [
            col for col in raw.columns
            if col in self.country.columns
            or col in PASSTHROUGH_ROLES
            or str(col).startswith(PANEL_FLAG_PREFIX)
        ]
        df = raw[keep].rename(columns=self.country.columns).copy()
        passthrough = [
            col for col in df.columns
            if col in PASSTHROUGH_ROLES or str(col).startswith(PANEL_FLAG_PREFIX)
        ]

        unavailable: set[str] = set()
        for derivation in self.derivations:
            missing = [
                col for col in derivation.inputs
                if col not in df.columns or col in unavailable
            ]
            if missing:
                self._skip(df, derivation, missing, unavailable)
                continue

            for name, values in derivation.build(df).items():
                df[name] = values
                self.tracker.record_series(STAGE, name, values)

        df["country_code"] = self.country.code
        canonical = df[CANONICAL_COLUMNS + passthrough].reset_index(drop=True)

        logger.info(
            f"{self.country.code}: mapped {len(canonical)} person-years "
            f"({canonical['individual_id'].nunique()} individuals, "
            f"{canonical['year'].nunique()} years); "
            f"{len(unavailable)} fields skipped"
        )
        return canonical

    def _skip(
        self,
        df: pd.DataFrame,
        derivation: Derivation,
        missing: list[str],
        unavailable: set[str],
    ) -> None:
        if derivation.required:
            raise MissingRequiredFieldError(derivation.outputs[0], missing, self.country.code)
        for name in derivation.outputs:
            df[name] = pd.Series(pd.NA, index=df.index, dtype="object")
            unavailable.add(name)
            self.tracker.record_field(
                STAGE, name, FieldStatus.SKIPPED, rows=len(df), missing_inputs=missing
            )

    def _wave(self, df: pd.DataFrame) -> dict[str, pd.Series]:
        year = _numeric(df["year"])
        return {"wave": (year - year.min() + 1).astype("Int64")}

    def _employment_status(self, df: pd.DataFrame) -> dict[str, pd.Series]:
        lookup = {code: int(status) for code, status in self.country.employment_status_codes.items()}
        status = _numeric(df["lstatus"]).astype("float64").map(lookup).astype("Int64")
        employed = (status == int(EmploymentStatus.EMPLOYED)).astype("boolean").where(status.notna())
        return {"employment_status": status, "employed": employed}

    def _employment_type(self, df: pd.DataFrame) -> dict[str, pd.Series]:
        lookup = {code: int(kind) for code, kind in self.country.employment_type_codes.items()}
        kind = _numeric(df["empstat"]).astype("float64").map(lookup).astype("Int64")
        # Only the employed have a relationship to a job
        employed = df["employment_status"] == int(EmploymentStatus.EMPLOYED)
        return {"employment_type": kind.where(employed.fillna(False).astype(bool))}

    def _sector(self, df: pd.DataFrame) -> dict[str, pd.Series]:
        lookup = {code: int(sector) for code, sector in self.country.sector_groups.items()}
        return {"sector": _numeric(df["industry"]).astype("float64").map(lookup).astype("Int64")}

    def _formality(self, role: str, output: str) -> Callable[[pd.DataFrame], dict[str, pd.Series]]:
        def build(df: pd.DataFrame) -> dict[str, pd.Series]:
            salaried = (df["employment_type"] == int(EmploymentType.SALARIED)).fillna(False).astype(bool)
            return {output: _flag(df[role]).where(salaried)}
        return build

    def _female(self, df: pd.DataFrame) -> dict[str, pd.Series]:
        male = _numeric(df["male"])
        return {"female": (male != self.country.male_code).astype("boolean").where(male.notna())}

    def _education(self, df: pd.DataFrame) -> dict[str, pd.Series]:
        level = _numeric(df["educat7"])
        return {"education_7cat": level.where(level.between(1, 7)).astype("Int64")}

    def _relationship(self, df: pd.DataFrame) -> dict[str, pd.Series]:
        relation = _numeric(df["relationharm"])
        known = relation.notna()
        head = relation == self.country.head_code
        spouse = relation == self.country.spouse_code
        other = ~head & ~spouse
        return {
            "head": head.astype("boolean").where(known),
            "spouse": spouse.astype("boolean").where(known),
            "other_member": other.astype("boolean").where(known),
        }

    def _household_weight(self, df: pd.DataFrame) -> dict[str, pd.Series]:
        head_weight = df["individual_weight"].where(df["head"].fillna(False).astype(bool))
        weight = head_weight.groupby([df["household_id"], df["year"]]).transform("max")

        headless = weight.isna().groupby([df["household_id"], df["year"]]).all().sum()
        if headless:
            logger.warning(
                f"{self.country.code}: {headless} household-years have no head; "
                "household_weight left missing"
            )
        return {"household_weight": weight}


def map_country(
    raw: pd.DataFrame,
    country: CountryConfig,
    tracker: DataLineageTracker | None = None,
) -> pd.DataFrame:
    """Convenience wrapper around SchemaMapper.map."""
    return SchemaMapper(country, tracker).map(raw)
