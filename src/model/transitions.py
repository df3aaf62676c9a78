"""
Weighted labor-market transition matrices for balanced two-wave panels.

A balanced panel is reshaped to one row per individual (``<var>_t0`` and
``<var>_t1`` columns, weight taken from t0). Four dimensions are tabulated:

- employment: 0 not working, 1 employed
- employment_type: 0 not working, 1 unpaid, 2 self-employed, 3 salaried, 4 employer
- quintile: survey-weighted welfare quintile of each wave, 0 = no income
- skill: 0 not working, 1 low, 2 medium, 3 high

Missing-data policy, per dimension and individual:

- missing in both waves: excluded from that dimension's table
- missing in exactly one wave: that wave is recoded to 0
- employment type and skill are forced to 0 in any wave where the cleaned
  employment status is 0, so all tables share one "not working" population
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from config.settings import get_settings
from src.data.countries import EmploymentStatus
from src.exceptions import NormalizationDriftError, PanelStructureError

logger = logging.getLogger(__name__)

NOT_WORKING = 0
NO_INCOME = 0

TRACKED_VARIABLES = ["employment_status", "employment_type", "skill_level", "welfare_ppp"]

QUINTILE_PROBS = (0.2, 0.4, 0.6, 0.8)

EMPLOYMENT_LABELS = {0: "Not working", 1: "Employed"}
EMPLOYMENT_TYPE_LABELS = {
    0: "Not working",
    1: "Unpaid",
    2: "Self-employed",
    3: "Salaried",
    4: "Employer",
}
QUINTILE_LABELS = {0: "No income", 1: "Q1", 2: "Q2", 3: "Q3", 4: "Q4", 5: "Q5"}
SKILL_LABELS = {0: "Not working", 1: "Low skill", 2: "Medium skill", 3: "High skill"}

DIMENSIONS = {
    "employment": EMPLOYMENT_LABELS,
    "employment_type": EMPLOYMENT_TYPE_LABELS,
    "quintile": QUINTILE_LABELS,
    "skill": SKILL_LABELS,
}


def weighted_cutpoints(values: np.ndarray, weights: np.ndarray, probs=QUINTILE_PROBS) -> np.ndarray:
    """Cut-points of the weighted empirical distribution at the given probabilities."""
    values = np.asarray(values, dtype=float)
    weights = np.asarray(weights, dtype=float)
    mask = ~np.isnan(values) & ~np.isnan(weights) & (weights > 0)
    if not mask.any():
        return np.full(len(probs), np.nan)

    v = values[mask]
    w = weights[mask]
    sorter = np.argsort(v, kind="mergesort")
    v = v[sorter]
    cum = np.cumsum(w[sorter])
    targets = np.asarray(probs) * cum[-1]
    idx = np.minimum(np.searchsorted(cum, targets, side="left"), len(v) - 1)
    return v[idx]


def weighted_quintiles(values: pd.Series, weights: pd.Series) -> pd.Series:
    """
    Assign quintiles 1-5 from survey-weighted cut-points.

    A value equal to a cut-point falls in the lower quintile. Missing values
    stay missing.
    """
    values = pd.to_numeric(values, errors="coerce").astype(float)
    cuts = weighted_cutpoints(values.to_numpy(), pd.to_numeric(weights, errors="coerce").to_numpy())
    if np.isnan(cuts).any():
        return pd.Series(np.nan, index=values.index)
    quintile = np.searchsorted(cuts, values.to_numpy(), side="left") + 1
    return pd.Series(quintile, index=values.index, dtype=float).where(values.notna())


def recode_one_wave_missing(t0: pd.Series, t1: pd.Series, fill: int = NOT_WORKING):
    """
    Apply the missing-data policy to a pair of wave values.

    Returns:
        (t0, t1, valid) where ``valid`` marks individuals not missing in both
        waves, and a value missing in exactly one wave is replaced by ``fill``
    """
    valid = t0.notna() | t1.notna()
    return t0.fillna(fill).where(valid), t1.fillna(fill).where(valid), valid


@dataclass
class TransitionMatrix:
    """Weighted (t0 x t1) contingency table for one dimension."""

    dimension: str
    labels: dict[int, str]
    weighted: pd.DataFrame
    percent: pd.DataFrame
    n_unweighted: int
    n_weighted: float
    n_recoded: int = 0

    def total_percent(self) -> float:
        return float(self.percent.to_numpy().sum())

    def labeled(self) -> pd.DataFrame:
        """Percent table with category labels on both axes."""
        table = self.percent.rename(index=self.labels, columns=self.labels)
        table.index.name = "t0 \\ t1"
        table.columns.name = None
        return table


@dataclass
class TransitionResults:
    """Transition matrices for one (country, t0, t1) panel."""

    country_code: str
    t0: int | None
    t1: int | None
    matrices: dict[str, TransitionMatrix] = field(default_factory=dict)

    def summary_frame(self) -> pd.DataFrame:
        return pd.DataFrame([
            {
                "dimension": name,
                "n_unweighted": m.n_unweighted,
                "n_weighted": m.n_weighted,
                "n_recoded_one_wave": m.n_recoded,
                "total_percent": round(m.total_percent(), 4),
            }
            for name, m in self.matrices.items()
        ])

    def summary(self) -> str:
        lines = [f"Transitions {self.country_code} {self.t0}-{self.t1}"]
        for name, m in self.matrices.items():
            lines.append(
                f"  {name:<16} N={m.n_unweighted:>7,}  weighted N={m.n_weighted:>14,.1f}"
            )
        return "\n".join(lines)


class TransitionAnalyzer:
    """Computes weighted transition matrices from a balanced two-wave panel."""

    def __init__(self, heads_only: bool = True, tolerance: float | None = None):
        settings = get_settings()
        self.heads_only = heads_only
        self.tolerance = tolerance if tolerance is not None else settings.normalization_tolerance

    def select_sample(self, panel: pd.DataFrame) -> pd.DataFrame:
        """Balanced individuals, optionally restricted to household heads."""
        df = panel[panel["balanced_panel"].fillna(False).astype(bool)]
        if self.heads_only:
            if "head" not in df.columns or df["head"].isna().all():
                logger.warning("Head indicator unavailable; tabulating all balanced individuals")
            else:
                head_ids = df.loc[df["head"].fillna(False).astype(bool) & (df["time"] == 0), "individual_id"]
                df = df[df["individual_id"].isin(head_ids)]
        return df

    def reshape_wide(self, panel: pd.DataFrame) -> pd.DataFrame:
        """
        Reshape the balanced sample to one row per individual.

        Welfare quintiles are assigned per wave before reshaping, with cut-points
        from that wave's weighted distribution.

        Returns:
            DataFrame indexed by individual_id with ``<var>_t0``, ``<var>_t1``,
            ``quintile_t0``, ``quintile_t1`` and ``weight``
        """
        df = self.select_sample(panel).copy()
        if df.empty:
            columns = [f"{var}_t{time}" for var in [*TRACKED_VARIABLES, "quintile"] for time in (0, 1)]
            return pd.DataFrame(columns=[*columns, "weight"], dtype=float)

        duplicated = df.duplicated(["individual_id", "time"], keep=False)
        if duplicated.any():
            ids = df.loc[duplicated, "individual_id"].unique()
            raise PanelStructureError(
                [f"individual {pid}: more than one record in a wave" for pid in ids]
            )

        for col in TRACKED_VARIABLES:
            if col not in df.columns:
                logger.warning(f"{col} not in panel; treated as missing in both waves")
                df[col] = np.nan
            df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)

        df["quintile"] = np.nan
        for time in (0, 1):
            wave = df["time"] == time
            df.loc[wave, "quintile"] = weighted_quintiles(
                df.loc[wave, "welfare_ppp"], df.loc[wave, "individual_weight"]
            )

        values = [*TRACKED_VARIABLES, "quintile", "individual_weight"]
        wide = df.pivot(index="individual_id", columns="time", values=values)
        wide.columns = [f"{var}_t{time}" for var, time in wide.columns]
        for var in values:
            for time in (0, 1):
                if f"{var}_t{time}" not in wide.columns:
                    wide[f"{var}_t{time}"] = np.nan

        wide["weight"] = wide["individual_weight_t0"]
        return wide.drop(columns=["individual_weight_t0", "individual_weight_t1"])

    def clean_employment(self, wide: pd.DataFrame) -> tuple[pd.Series, pd.Series, pd.Series]:
        """Binary employment status per wave after the missing-data policy."""
        employed = float(EmploymentStatus.EMPLOYED)

        def binary(status: pd.Series) -> pd.Series:
            return (status == employed).astype(float).where(status.notna())

        return recode_one_wave_missing(binary(wide["employment_status_t0"]), binary(wide["employment_status_t1"]))

    def _job_dimension(
        self,
        wide: pd.DataFrame,
        variable: str,
        emp_t0: pd.Series,
        emp_t1: pd.Series,
    ) -> tuple[pd.Series, pd.Series, pd.Series]:
        """Job attribute per wave, forced to 0 wherever cleaned employment is 0."""
        t0 = wide[f"{variable}_t0"].where(emp_t0 != NOT_WORKING, NOT_WORKING)
        t1 = wide[f"{variable}_t1"].where(emp_t1 != NOT_WORKING, NOT_WORKING)
        return recode_one_wave_missing(t0, t1)

    def tabulate(
        self,
        dimension: str,
        t0: pd.Series,
        t1: pd.Series,
        valid: pd.Series,
        weight: pd.Series,
        n_recoded: int = 0,
    ) -> TransitionMatrix:
        """
        Weighted contingency table normalized to percent of retained weight.

        Raises:
            NormalizationDriftError: if cells do not sum to 100 within tolerance
        """
        labels = dict(DIMENSIONS[dimension])
        if dimension == "quintile" and n_recoded == 0:
            labels.pop(NO_INCOME)
        categories = list(labels)

        retained = valid & weight.notna()
        rows = t0[retained].astype(int)
        cols = t1[retained].astype(int)
        w = weight[retained].astype(float)

        if retained.any():
            weighted = pd.crosstab(rows, cols, values=w, aggfunc="sum")
        else:
            weighted = pd.DataFrame(dtype=float)
        weighted = weighted.reindex(index=categories, columns=categories, fill_value=0.0).fillna(0.0)
        weighted.index.name = "t0"
        weighted.columns.name = "t1"

        total = float(w.sum())
        if total > 0:
            percent = weighted / total * 100
            drift = abs(float(percent.to_numpy().sum()) - 100.0)
            if drift > self.tolerance:
                raise NormalizationDriftError(dimension, float(percent.to_numpy().sum()))
        else:
            logger.warning(f"{dimension}: no individuals retained; matrix left empty")
            percent = weighted.copy()

        return TransitionMatrix(
            dimension=dimension,
            labels=labels,
            weighted=weighted,
            percent=percent,
            n_unweighted=int(retained.sum()),
            n_weighted=total,
            n_recoded=n_recoded,
        )

    @staticmethod
    def _wave_year(panel: pd.DataFrame, time: int) -> int | None:
        """Survey year of one wave, or None when the panel has no rows for it."""
        if panel.empty:
            return None
        years = panel.loc[panel["time"] == time, "year"].dropna()
        if years.empty:
            logger.warning(f"No rows at time={time}; wave year left unset")
            return None
        return int(years.iloc[0])

    def analyze(
        self,
        panel: pd.DataFrame,
        country_code: str = "",
        t0: int | None = None,
        t1: int | None = None,
    ) -> TransitionResults:
        """
        Compute the four transition matrices for one balanced panel.

        Args:
            panel: Panel dataset from the panel constructor
            country_code: Used for labeling and logging
            t0: Initial year (inferred from the panel when omitted)
            t1: Final year (inferred from the panel when omitted)

        Returns:
            TransitionResults with one TransitionMatrix per dimension
        """
        if t0 is None:
            t0 = self._wave_year(panel, 0)
        if t1 is None:
            t1 = self._wave_year(panel, 1)
        if not country_code and "country_code" in panel.columns and not panel.empty:
            country_code = str(panel["country_code"].iloc[0])

        wide = self.reshape_wide(panel)
        weight = wide["weight"]
        results = TransitionResults(country_code=country_code, t0=t0, t1=t1)

        def one_wave_missing(a: pd.Series, b: pd.Series) -> int:
            return int((a.isna() ^ b.isna()).sum())

        emp_t0, emp_t1, emp_valid = self.clean_employment(wide)
        results.matrices["employment"] = self.tabulate(
            "employment", emp_t0, emp_t1, emp_valid, weight,
            one_wave_missing(wide["employment_status_t0"], wide["employment_status_t1"]),
        )

        for dimension, variable in (("employment_type", "employment_type"), ("skill", "skill_level")):
            a, b, valid = self._job_dimension(wide, variable, emp_t0, emp_t1)
            results.matrices[dimension] = self.tabulate(
                dimension, a, b, valid, weight,
                one_wave_missing(wide[f"{variable}_t0"], wide[f"{variable}_t1"]),
            )

        q_recoded = one_wave_missing(wide["quintile_t0"], wide["quintile_t1"])
        q0, q1, q_valid = recode_one_wave_missing(wide["quintile_t0"], wide["quintile_t1"], NO_INCOME)
        results.matrices["quintile"] = self.tabulate("quintile", q0, q1, q_valid, weight, q_recoded)

        logger.info(results.summary())
        return results
