"""
CPI and PPP reference merge.

Builds the price fields the monetary conversion needs from a monthly CPI
table keyed by (country_code, year, month):

- wave CPI: mean CPI over the country's collection months in each survey year
- reference CPI: mean CPI over the 12 months of the reference year

Two CPI sources are merged side by side (IMF and the SEDLAC alternative),
together with the PPP conversion factor and currency-unit adjustment keyed by
country. Rows that find no match keep missing values; they are never dropped.
"""

import logging

import pandas as pd

from config.settings import get_settings
from src.data.countries import COUNTRIES
from src.data.data_lineage import DataLineageTracker, FieldStatus

logger = logging.getLogger(__name__)

STAGE = "cpi_merge"

CPI_SOURCES = ("imf", "alt")
CPI_TABLE_COLUMNS = ["country_code", "year", "month", "cpi"]
PPP_TABLE_COLUMNS = ["country_code", "ppp_conversion_2021", "currency_unit_adjustment"]


class CPIReference:
    """Computes wave and reference CPI averages and merges them onto canonical data."""

    def __init__(
        self,
        reference_year: int | None = None,
        mismatch_threshold: float | None = None,
        tracker: DataLineageTracker | None = None,
    ):
        settings = get_settings()
        self.reference_year = reference_year or settings.reference_year
        self.mismatch_threshold = (
            mismatch_threshold
            if mismatch_threshold is not None
            else settings.merge_mismatch_threshold
        )
        self.tracker = tracker or DataLineageTracker()

    @staticmethod
    def _validate(cpi: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in CPI_TABLE_COLUMNS if col not in cpi.columns]
        if missing:
            raise ValueError(f"CPI table missing columns: {missing}")
        df = cpi[CPI_TABLE_COLUMNS].copy()
        df["cpi"] = pd.to_numeric(df["cpi"], errors="coerce")
        return df

    def wave_average(
        self,
        cpi: pd.DataFrame,
        collection_months: dict[str, tuple[int, ...]] | None = None,
    ) -> pd.DataFrame:
        """
        Mean CPI over each country-year's collection window.

        Args:
            cpi: Monthly CPI table (country_code, year, month, cpi)
            collection_months: Months in each country's collection window;
                defaults to the window in the country table, or all 12 months

        Returns:
            DataFrame with country_code, year, cpi_at_wave, n_months
        """
        df = self._validate(cpi)
        windows = collection_months or {
            code: country.collection_months for code, country in COUNTRIES.items()
        }

        in_window = [
            month in windows.get(code, tuple(range(1, 13)))
            for code, month in zip(df["country_code"], df["month"])
        ]
        df = df[pd.Series(in_window, index=df.index, dtype=bool)]

        averages = (
            df.dropna(subset=["cpi"])
            .groupby(["country_code", "year"])["cpi"]
            .agg(cpi_at_wave="mean", n_months="count")
            .reset_index()
        )

        for row in averages.itertuples(index=False):
            expected = len(windows.get(row.country_code, tuple(range(1, 13))))
            if row.n_months < expected:
                logger.warning(
                    f"CPI {row.country_code} {row.year}: {row.n_months}/{expected} "
                    "collection months available; wave average uses available months only"
                )
        return averages

    def reference_average(self, cpi: pd.DataFrame) -> pd.DataFrame:
        """Mean CPI over the 12 months of the reference year, per country."""
        df = self._validate(cpi)
        df = df[(df["year"] == self.reference_year) & df["month"].between(1, 12)]

        averages = (
            df.dropna(subset=["cpi"])
            .groupby("country_code")["cpi"]
            .agg(cpi_2021_reference="mean", n_months="count")
            .reset_index()
        )

        for row in averages.itertuples(index=False):
            if row.n_months < 12:
                logger.warning(
                    f"CPI {row.country_code} {self.reference_year}: only {row.n_months}/12 "
                    "months available for the reference average"
                )
        return averages

    def _report_coverage(self, merged: pd.DataFrame, column: str, key: str) -> None:
        n = len(merged)
        unmatched = int(merged[column].isna().sum())
        share = unmatched / n if n else 0.0

        if unmatched == 0:
            self.tracker.record_field(STAGE, column, FieldStatus.PRODUCED, rows=n, coverage_pct=100.0)
            return

        notes = [f"{unmatched} rows without a {key} match ({share:.1%})"]
        missing_keys = merged.loc[merged[column].isna(), key.split(", ")].drop_duplicates()
        notes.append(f"unmatched keys: {missing_keys.to_dict('records')[:10]}")

        if share > self.mismatch_threshold:
            logger.error(
                f"MATERIAL MERGE GAP: {column} unmatched for {share:.1%} of rows "
                f"(threshold {self.mismatch_threshold:.0%}); values left missing"
            )
            status = FieldStatus.FLAGGED
        else:
            logger.warning(f"{column}: {unmatched} rows unmatched ({share:.1%}); values left missing")
            status = FieldStatus.PARTIAL

        self.tracker.record_field(
            STAGE, column, status, rows=n, coverage_pct=(1 - share) * 100, notes=notes
        )

    def merge(
        self,
        canonical: pd.DataFrame,
        cpi_imf: pd.DataFrame | None = None,
        cpi_alt: pd.DataFrame | None = None,
        ppp: pd.DataFrame | None = None,
    ) -> pd.DataFrame:
        """
        Merge wave CPI, reference CPI and PPP factors onto canonical records.

        Args:
            canonical: Canonical person-year table
            cpi_imf: Monthly IMF CPI table
            cpi_alt: Monthly SEDLAC CPI table
            ppp: PPP table (country_code, ppp_conversion_2021, currency_unit_adjustment)

        Returns:
            Copy of ``canonical`` with the price fields added. Absent inputs
            are recorded as skipped fields and left out of the result.
        """
        df = canonical.copy()

        for source, table in zip(CPI_SOURCES, (cpi_imf, cpi_alt)):
            wave_col = f"cpi_at_wave_{source}"
            ref_col = f"cpi_2021_reference_{source}"
            if table is None:
                for col in (wave_col, ref_col):
                    self.tracker.record_field(
                        STAGE, col, FieldStatus.SKIPPED, rows=len(df),
                        missing_inputs=[f"cpi_{source}_table"],
                    )
                continue

            wave = self.wave_average(table).rename(columns={"cpi_at_wave": wave_col})
            ref = self.reference_average(table).rename(columns={"cpi_2021_reference": ref_col})
            wave["year"] = wave["year"].astype(df["year"].dtype)

            df = df.merge(wave[["country_code", "year", wave_col]], on=["country_code", "year"], how="left")
            df = df.merge(ref[["country_code", ref_col]], on="country_code", how="left")
            self._report_coverage(df, wave_col, "country_code, year")
            self._report_coverage(df, ref_col, "country_code")

        if ppp is None:
            for col in PPP_TABLE_COLUMNS[1:]:
                self.tracker.record_field(
                    STAGE, col, FieldStatus.SKIPPED, rows=len(df), missing_inputs=["ppp_table"]
                )
        else:
            missing = [col for col in PPP_TABLE_COLUMNS if col not in ppp.columns]
            if missing:
                raise ValueError(f"PPP table missing columns: {missing}")
            df = df.merge(ppp[PPP_TABLE_COLUMNS].drop_duplicates("country_code"), on="country_code", how="left")
            for col in PPP_TABLE_COLUMNS[1:]:
                self._report_coverage(df, col, "country_code")

        logger.info(f"Merged price references onto {len(df)} rows")
        return df
