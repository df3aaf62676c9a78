"""
Annualized, CPI- and PPP-adjusted wage and earnings measures.

Two income concepts are converted from nominal local currency to constant
2021 international dollars:

    wage_ppp     = hourly wage x weekly hours x 52 x deflator   (salaried only)
    earnings_ppp = monthly labor income x 12 x deflator          (self-employed, employers)

    deflator = (cpi_2021_reference / cpi_at_wave)
               / (ppp_conversion_2021 x currency_unit_adjustment)

Each concept is computed once per CPI source (IMF and the SEDLAC
alternative). The primary ``wage_ppp``/``earnings_ppp`` columns follow the
country's preferred source.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

import pandas as pd

from src.data.countries import CountryConfig, EmploymentType
from src.data.cpi import CPI_SOURCES
from src.data.data_lineage import DataLineageTracker, FieldStatus
from src.exceptions import ConversionInvariantError

logger = logging.getLogger(__name__)

STAGE = "monetary"
WEEKS_PER_YEAR = 52
MONTHS_PER_YEAR = 12

PRICE_INPUTS = ("ppp_conversion_2021", "currency_unit_adjustment")


@dataclass(frozen=True)
class IncomeConcept:
    """An income measure, its nominal inputs and the employment types it applies to."""

    name: str
    amount_inputs: tuple[str, ...]
    annualize: Callable[[pd.DataFrame], pd.Series]
    employment_types: tuple[EmploymentType, ...]

    @property
    def column(self) -> str:
        return f"{self.name}_ppp"


WAGE = IncomeConcept(
    name="wage",
    amount_inputs=("hourly_wage_local", "weekly_hours"),
    annualize=lambda df: df["hourly_wage_local"] * df["weekly_hours"] * WEEKS_PER_YEAR,
    employment_types=(EmploymentType.SALARIED,),
)

EARNINGS = IncomeConcept(
    name="earnings",
    amount_inputs=("monthly_labor_income_local",),
    annualize=lambda df: df["monthly_labor_income_local"] * MONTHS_PER_YEAR,
    employment_types=(EmploymentType.SELF_EMPLOYED, EmploymentType.EMPLOYER),
)

INCOME_CONCEPTS = (WAGE, EARNINGS)


def ppp_deflator(cpi_at_wave, cpi_2021_reference, ppp_conversion_2021, currency_unit_adjustment):
    """Factor taking nominal local currency at the wave to constant 2021 international dollars."""
    return (cpi_2021_reference / cpi_at_wave) / (ppp_conversion_2021 * currency_unit_adjustment)


def cpi_columns(source: str) -> tuple[str, str]:
    """(wave CPI, reference CPI) column names for a CPI source."""
    return f"cpi_at_wave_{source}", f"cpi_2021_reference_{source}"


@dataclass
class ConversionReport:
    """What one conversion run produced and skipped."""

    produced: list[str] = field(default_factory=list)
    skipped: dict[str, list[str]] = field(default_factory=dict)
    primary_source: dict[str, str] = field(default_factory=dict)
    coverage: dict[str, float] = field(default_factory=dict)

    def summary(self) -> str:
        lines = ["Monetary conversion:"]
        for column in self.produced:
            lines.append(f"  {column:<22} {self.coverage.get(column, 0.0):6.1f}% of eligible rows")
        for column, missing in self.skipped.items():
            lines.append(f"  {column:<22} skipped (missing: {', '.join(missing)})")
        for concept, source in self.primary_source.items():
            lines.append(f"  {concept}_ppp primary source: {source}")
        return "\n".join(lines)


class MonetaryConverter:
    """Adds wage and earnings PPP measures to a panel dataset in place."""

    def __init__(self, country: CountryConfig, tracker: DataLineageTracker | None = None):
        self.country = country
        self.tracker = tracker or DataLineageTracker(country.code)

    @property
    def preferred_source(self) -> str:
        return "alt" if self.country.alt_cpi_primary else "imf"

    def required_inputs(self, concept: IncomeConcept, source: str) -> list[str]:
        return [
            *concept.amount_inputs,
            "employment_type",
            *cpi_columns(source),
            *PRICE_INPUTS,
        ]

    def compute(self, panel: pd.DataFrame, concept: IncomeConcept, source: str) -> pd.Series:
        """One concept under one CPI source, missing outside the concept's employment types."""
        wave_col, ref_col = cpi_columns(source)
        deflator = ppp_deflator(
            pd.to_numeric(panel[wave_col], errors="coerce"),
            pd.to_numeric(panel[ref_col], errors="coerce"),
            pd.to_numeric(panel["ppp_conversion_2021"], errors="coerce"),
            pd.to_numeric(panel["currency_unit_adjustment"], errors="coerce"),
        )
        inputs = panel[list(concept.amount_inputs)].apply(pd.to_numeric, errors="coerce")
        amounts = concept.annualize(inputs)
        eligible = self._eligible(panel, concept)
        return (amounts * deflator).where(eligible).astype(float)

    @staticmethod
    def _eligible(panel: pd.DataFrame, concept: IncomeConcept) -> pd.Series:
        types = [int(t) for t in concept.employment_types]
        return pd.to_numeric(panel["employment_type"], errors="coerce").isin(types)

    def check_invariant(self, panel: pd.DataFrame, column: str, concept: IncomeConcept) -> None:
        """Raise if the measure is populated for a non-eligible employment type."""
        violations = int((panel[column].notna() & ~self._eligible(panel, concept)).sum())
        if violations:
            raise ConversionInvariantError(column, violations)

    def convert(self, panel: pd.DataFrame) -> ConversionReport:
        """
        Add ``<concept>_ppp_imf``, ``<concept>_ppp_alt`` and the primary
        ``<concept>_ppp`` columns to ``panel``.

        A concept whose inputs are absent is skipped for the whole dataset and
        the missing inputs are reported; other concepts are still converted.

        Args:
            panel: Panel dataset, modified in place

        Returns:
            ConversionReport
        """
        report = ConversionReport()

        for concept in INCOME_CONCEPTS:
            available = []
            for source in CPI_SOURCES:
                column = f"{concept.column}_{source}"
                # Fields skipped at mapping exist but are entirely missing
                missing = [
                    c for c in self.required_inputs(concept, source)
                    if c not in panel.columns or panel[c].isna().all()
                ]
                if missing:
                    report.skipped[column] = missing
                    self.tracker.record_field(
                        STAGE, column, FieldStatus.SKIPPED, rows=len(panel), missing_inputs=missing
                    )
                    continue

                panel[column] = self.compute(panel, concept, source)
                self.check_invariant(panel, column, concept)
                available.append(source)
                report.produced.append(column)
                report.coverage[column] = self._coverage(panel, column, concept)
                self.tracker.record_field(
                    STAGE, column,
                    FieldStatus.PRODUCED if report.coverage[column] == 100.0 else FieldStatus.PARTIAL,
                    rows=len(panel),
                    coverage_pct=report.coverage[column],
                )

            self._set_primary(panel, concept, available, report)

        logger.info(f"{self.country.code}: " + report.summary().replace("\n", "; "))
        return report

    def _set_primary(
        self,
        panel: pd.DataFrame,
        concept: IncomeConcept,
        available: list[str],
        report: ConversionReport,
    ) -> None:
        if not available:
            report.skipped[concept.column] = [f"{concept.column}_{source}" for source in CPI_SOURCES]
            self.tracker.record_field(
                STAGE, concept.column, FieldStatus.SKIPPED, rows=len(panel),
                missing_inputs=report.skipped[concept.column],
            )
            return

        source = self.preferred_source
        notes = [f"primary CPI source: {source}"]
        status = None
        if source not in available:
            fallback = available[0]
            logger.warning(
                f"{self.country.code}: {concept.column} preferred CPI source '{source}' "
                f"unavailable; falling back to '{fallback}'"
            )
            notes = [f"primary source fell back from {source} to {fallback}"]
            status = FieldStatus.FLAGGED
            source = fallback

        panel[concept.column] = panel[f"{concept.column}_{source}"]
        self.check_invariant(panel, concept.column, concept)
        coverage = self._coverage(panel, concept.column, concept)
        report.primary_source[concept.name] = source
        report.produced.append(concept.column)
        report.coverage[concept.column] = coverage

        if status is None:
            status = FieldStatus.PRODUCED if coverage == 100.0 else FieldStatus.PARTIAL
        self.tracker.record_field(
            STAGE, concept.column, status, rows=len(panel), coverage_pct=coverage, notes=notes
        )

    def _coverage(self, panel: pd.DataFrame, column: str, concept: IncomeConcept) -> float:
        eligible = self._eligible(panel, concept)
        if not eligible.any():
            return 0.0
        return float(panel.loc[eligible, column].notna().mean() * 100)
