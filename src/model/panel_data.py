"""
Two-wave panel construction.

Selects the rows of a canonical person-year table that fall in a (t0, t1)
year pair, decides which individuals are observed in both waves under the
country's membership rule, and tags every row with ``time`` and
``balanced_panel``. Each panel is persisted as its own parquet file.
"""

import logging
from pathlib import Path

import pandas as pd

from config.settings import get_settings
from src.data.countries import CountryConfig, MembershipRule
from src.exceptions import (
    ConfigurationError,
    MissingRequiredFieldError,
    PanelStructureError,
)

logger = logging.getLogger(__name__)


def panel_flag_column(t0: int, t1: int) -> str:
    """Name of the precomputed per-year-pair panel flag."""
    return f"panel_flag_{t0}_{t1}"


def panel_filename(country_code: str, t0: int, t1: int) -> str:
    """Deterministic file name for one (country, t0, t1) panel."""
    return f"{country_code.upper()}_panel_{t0}_{t1}.parquet"


def balanced_ids(panel: pd.DataFrame) -> set:
    """Individuals flagged as balanced in a constructed panel."""
    return set(panel.loc[panel["balanced_panel"], "individual_id"])


class PanelConstructor:
    """Builds labeled two-wave panels for one country."""

    def __init__(self, country: CountryConfig, min_head_age: int | None = None):
        settings = get_settings()
        self.country = country
        self.min_head_age = min_head_age if min_head_age is not None else settings.min_head_age

    def construct(self, canonical: pd.DataFrame, t0: int, t1: int) -> pd.DataFrame:
        """
        Build the (t0, t1) panel.

        Args:
            canonical: Canonical person-year table, possibly spanning many years
            t0: Initial survey year
            t1: Final survey year

        Returns:
            Rows with year in {t0, t1} (after any population restriction the
            country's rule applies), with ``time`` (0 at t0, 1 at t1) and
            ``balanced_panel`` columns
        """
        if t0 >= t1:
            raise ConfigurationError(f"Invalid year pair ({t0}, {t1}): t0 must precede t1")

        df = canonical[canonical["year"].isin([t0, t1])].copy()
        if df.empty:
            logger.warning(f"{self.country.code}: no rows for years {t0} and {t1}")

        rule = self.country.membership_rule
        if rule == MembershipRule.REDERIVED:
            present = self._presence_from_rows(df, t0, t1)
        elif rule == MembershipRule.PRECOMPUTED:
            df = self._restrict_population(df)
            present = self._presence_from_indicator(df, t0, t1)
        elif rule == MembershipRule.DIAGNOSTIC_FLAG:
            df = self._restrict_to_heads(df)
            present = self._presence_from_pair_flag(df, t0, t1)
        else:
            raise ConfigurationError(f"{self.country.code}: unsupported membership rule {rule}")

        balanced = present.index[present["t0"] & present["t1"]]

        df["time"] = (df["year"] == t1).astype(int)
        df["balanced_panel"] = df["individual_id"].isin(balanced)
        df = df.reset_index(drop=True)

        self._log_counts(df, t0, t1)
        return df

    @staticmethod
    def _presence_table(rows: pd.DataFrame, individuals, t0: int, t1: int) -> pd.DataFrame:
        """Boolean (individual x {t0, t1}) table of years with at least one row."""
        if rows.empty:
            return pd.DataFrame({"t0": False, "t1": False}, index=pd.Index(individuals))
        seen = (
            rows.groupby(["individual_id", "year"]).size()
            .unstack(fill_value=0)
            .reindex(index=individuals, columns=[t0, t1], fill_value=0)
            > 0
        )
        return pd.DataFrame({"t0": seen[t0], "t1": seen[t1]})

    def _presence_from_rows(self, df: pd.DataFrame, t0: int, t1: int) -> pd.DataFrame:
        """Rule A: present in a year iff at least one row exists for it."""
        return self._presence_table(df, df["individual_id"].unique(), t0, t1)

    def _presence_from_indicator(self, df: pd.DataFrame, t0: int, t1: int) -> pd.DataFrame:
        """Rule B: trust the upstream per-(individual, year) presence flag."""
        if "present_in_year" not in df.columns:
            raise MissingRequiredFieldError("balanced_panel", ["present_in_year"], self.country.code)

        flagged = df[df["present_in_year"].fillna(False).astype(bool)]
        return self._presence_table(flagged, df["individual_id"].unique(), t0, t1)

    def _presence_from_pair_flag(self, df: pd.DataFrame, t0: int, t1: int) -> pd.DataFrame:
        """Rule C: trust the precomputed panel flag for this year pair."""
        column = panel_flag_column(t0, t1)
        if column not in df.columns:
            raise MissingRequiredFieldError("balanced_panel", [column], self.country.code)

        flag = df[column].fillna(False).astype(bool).groupby(df["individual_id"]).any()
        return pd.DataFrame({"t0": flag, "t1": flag})

    def _require_column(self, df: pd.DataFrame, column: str) -> pd.Series:
        if column not in df.columns or df[column].isna().all():
            raise MissingRequiredFieldError("balanced_panel", [column], self.country.code)
        return df[column].fillna(False).astype(bool)

    def _restrict_population(self, df: pd.DataFrame) -> pd.DataFrame:
        """Household-coherence and head-only filters applied before membership."""
        n_before = len(df)
        if self.country.household_coherence_filter:
            df = df[self._require_column(df, "coherent_household")]
        if self.country.heads_only:
            df = df[self._require_column(df, "head")]
        if len(df) < n_before:
            logger.info(
                f"{self.country.code}: population filters kept {len(df)}/{n_before} rows"
            )
        return df

    def _restrict_to_heads(self, df: pd.DataFrame) -> pd.DataFrame:
        """Heads of coherent households at or above the minimum age."""
        heads = self._require_column(df, "head")
        coherent = self._require_column(df, "coherent_household")
        age = pd.to_numeric(df["age"], errors="coerce")
        restricted = df[heads & coherent & (age >= self.min_head_age)]
        logger.info(
            f"{self.country.code}: {len(restricted)}/{len(df)} rows are heads of coherent "
            f"households aged {self.min_head_age}+"
        )
        return restricted

    def _log_counts(self, df: pd.DataFrame, t0: int, t1: int) -> None:
        balanced = df[df["balanced_panel"]]
        n_people = balanced["individual_id"].nunique()
        n_households = balanced.loc[balanced["time"] == 0, "household_id"].nunique()
        logger.info(
            f"{self.country.code} {t0}-{t1}: {n_people} balanced individuals "
            f"in {n_households} households ({len(df)} rows, "
            f"{df['individual_id'].nunique()} individuals observed)"
        )

    def validate_structure(self, panel: pd.DataFrame, strict: bool = False) -> list[str]:
        """
        Check that every balanced individual has exactly one record per wave.

        Violations are reported, never resolved by deduplication.

        Args:
            panel: Output of construct()
            strict: Raise PanelStructureError instead of returning violations

        Returns:
            List of violation messages (empty when the panel is well formed)
        """
        balanced = panel[panel["balanced_panel"]]
        counts = (
            balanced.groupby(["individual_id", "time"]).size()
            .unstack(fill_value=0)
            .reindex(columns=[0, 1], fill_value=0)
        )
        bad = counts[(counts[0] != 1) | (counts[1] != 1)]

        violations = [
            f"{self.country.code} individual {pid}: {int(row[0])} records at t0, {int(row[1])} at t1"
            for pid, row in bad.iterrows()
        ]
        if violations:
            for message in violations[:20]:
                logger.error(f"Panel structure violation: {message}")
            if strict:
                raise PanelStructureError(violations)
        return violations

    def save_panel(
        self,
        panel: pd.DataFrame,
        t0: int,
        t1: int,
        output_dir: Path | None = None,
    ) -> Path:
        """Persist a panel, overwriting only its own file."""
        settings = get_settings()
        output_dir = output_dir or settings.project_root / settings.panels_dir
        output_dir.mkdir(parents=True, exist_ok=True)

        filepath = output_dir / panel_filename(self.country.code, t0, t1)
        panel.to_parquet(filepath, index=False)

        logger.info(f"Saved panel to {filepath}")
        return filepath


def load_panel(country_code: str, t0: int, t1: int, panel_dir: Path | None = None) -> pd.DataFrame:
    """Load a persisted panel."""
    settings = get_settings()
    panel_dir = panel_dir or settings.project_root / settings.panels_dir
    filepath = panel_dir / panel_filename(country_code, t0, t1)
    if not filepath.exists():
        raise FileNotFoundError(f"Panel not found: {filepath}. Run 'build-panels' first.")
    return pd.read_parquet(filepath)
