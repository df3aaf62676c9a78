"""
Run orchestration for one country.

Stages, per country:

1. Schema mapping of the raw survey table (once)
2. CPI/PPP reference merge (once)
3. For each (t0, t1) year pair: panel construction, structure check,
   monetary conversion, persistence, transition matrices and report export

Year pairs are independent units of work. They may run concurrently; each
worker receives its own copy of the canonical table and writes only its own
files.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from config.settings import get_settings
from src.data.countries import CountryConfig, get_country
from src.data.cpi import CPIReference
from src.data.data_lineage import DataLineageTracker, FieldStatus
from src.data.schema_mapper import SchemaMapper
from src.engine.report import export_transitions, report_filename
from src.exceptions import ConfigurationError, PanelStructureError
from src.model.monetary import ConversionReport, MonetaryConverter
from src.model.panel_data import PanelConstructor
from src.model.transitions import TransitionAnalyzer, TransitionResults

logger = logging.getLogger(__name__)


def read_table(path: Path) -> pd.DataFrame:
    """Read a rectangular input table by file extension."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(path)
    if suffix == ".csv":
        return pd.read_csv(path)
    if suffix == ".dta":
        return pd.read_stata(path, convert_categoricals=False)
    raise ConfigurationError(f"Unsupported input format: {path}")


def harmonize_survey(
    country: CountryConfig,
    raw: pd.DataFrame,
    cpi_imf: pd.DataFrame | None = None,
    cpi_alt: pd.DataFrame | None = None,
    ppp: pd.DataFrame | None = None,
    tracker: DataLineageTracker | None = None,
) -> pd.DataFrame:
    """Map a raw survey table and merge the CPI and PPP references onto it."""
    tracker = tracker or DataLineageTracker(f"{country.code} mapping")
    canonical = SchemaMapper(country, tracker).map(raw)
    if cpi_imf is None and cpi_alt is None and ppp is None:
        logger.warning(
            f"{country.code}: no CPI or PPP tables supplied; monetary measures will be skipped"
        )
    return CPIReference(tracker=tracker).merge(canonical, cpi_imf, cpi_alt, ppp)


@dataclass(frozen=True)
class RunConfig:
    """Explicit configuration for one country run."""

    country_code: str
    year_pairs: tuple[tuple[int, int], ...]
    input_path: Path | None = None
    cpi_imf_path: Path | None = None
    cpi_alt_path: Path | None = None
    ppp_path: Path | None = None
    output_dir: Path | None = None
    max_workers: int = 1
    heads_only: bool = True
    strict_panels: bool = False

    def validate(self) -> CountryConfig:
        """Check the configuration before any processing. Returns the country config."""
        country = get_country(self.country_code)

        if not self.year_pairs:
            raise ConfigurationError("At least one (t0, t1) year pair is required")
        for t0, t1 in self.year_pairs:
            if t0 >= t1:
                raise ConfigurationError(f"Invalid year pair ({t0}, {t1}): t0 must precede t1")

        for name in ("input_path", "cpi_imf_path", "cpi_alt_path", "ppp_path"):
            path = getattr(self, name)
            if path is not None and not Path(path).exists():
                raise ConfigurationError(f"{name} does not exist: {path}")

        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        return country

    @property
    def panels_dir(self) -> Path:
        """``<output_dir>/panels``, or the settings panel directory read by ``load_panel``."""
        if self.output_dir is not None:
            return Path(self.output_dir) / "panels"
        settings = get_settings()
        return settings.project_root / settings.panels_dir

    @property
    def reports_dir(self) -> Path:
        if self.output_dir is not None:
            return Path(self.output_dir) / "reports"
        settings = get_settings()
        return settings.project_root / settings.reports_dir


@dataclass
class PairResult:
    """Outputs of one (t0, t1) unit of work."""

    t0: int
    t1: int
    panel_path: Path | None = None
    report_path: Path | None = None
    conversion: ConversionReport | None = None
    transitions: TransitionResults | None = None
    structure_violations: list[str] = field(default_factory=list)
    lineage: DataLineageTracker | None = None


class HarmonizationPipeline:
    """Runs mapping, panel construction, conversion and tabulation for one country."""

    def __init__(self, config: RunConfig):
        self.config = config
        self.country = config.validate()
        self.panels_dir = config.panels_dir
        self.reports_dir = config.reports_dir
        self.tracker = DataLineageTracker(f"{self.country.code} mapping")

    def harmonize(
        self,
        raw: pd.DataFrame,
        cpi_imf: pd.DataFrame | None = None,
        cpi_alt: pd.DataFrame | None = None,
        ppp: pd.DataFrame | None = None,
    ) -> pd.DataFrame:
        """Canonical person-year table with price references merged."""
        return harmonize_survey(self.country, raw, cpi_imf, cpi_alt, ppp, self.tracker)

    def process_pair(self, canonical: pd.DataFrame, t0: int, t1: int) -> PairResult:
        """Build, convert, persist and tabulate one year pair."""
        lineage = DataLineageTracker(f"{self.country.code} {t0}-{t1}")
        result = PairResult(t0=t0, t1=t1, lineage=lineage)

        constructor = PanelConstructor(self.country)
        panel = constructor.construct(canonical, t0, t1)
        result.structure_violations = constructor.validate_structure(
            panel, strict=self.config.strict_panels
        )

        result.conversion = MonetaryConverter(self.country, lineage).convert(panel)
        result.panel_path = constructor.save_panel(panel, t0, t1, self.panels_dir)

        analyzer = TransitionAnalyzer(heads_only=self.config.heads_only)
        try:
            result.transitions = analyzer.analyze(panel, self.country.code, t0, t1)
        except PanelStructureError as e:
            if self.config.strict_panels:
                raise
            # Duplicate wave records cannot be reshaped; the pair is reported, not tabulated
            logger.error(
                f"{self.country.code} {t0}-{t1}: transition matrices not computed, "
                f"{len(e.violations)} individuals with duplicate wave records"
            )
            result.structure_violations.extend(
                v for v in e.violations if v not in result.structure_violations
            )
            lineage.record_field(
                "transitions", "transition_matrices", FieldStatus.SKIPPED,
                rows=len(panel), notes=e.violations[:20],
            )
        else:
            result.report_path = export_transitions(
                result.transitions, self.reports_dir / report_filename(self.country.code, t0, t1)
            )

        lineage.save(self.panels_dir / f"{self.country.code}_lineage_{t0}_{t1}.json")
        return result

    def run(
        self,
        raw: pd.DataFrame | None = None,
        cpi_imf: pd.DataFrame | None = None,
        cpi_alt: pd.DataFrame | None = None,
        ppp: pd.DataFrame | None = None,
    ) -> list[PairResult]:
        """
        Run every configured year pair.

        Tables not passed explicitly are read from the paths in the run
        configuration.

        Returns:
            One PairResult per year pair, in configuration order
        """
        raw = raw if raw is not None else self._load("input_path")
        if raw is None:
            raise ConfigurationError("No raw survey table supplied and no input_path configured")
        cpi_imf = cpi_imf if cpi_imf is not None else self._load("cpi_imf_path")
        cpi_alt = cpi_alt if cpi_alt is not None else self._load("cpi_alt_path")
        ppp = ppp if ppp is not None else self._load("ppp_path")

        canonical = self.harmonize(raw, cpi_imf, cpi_alt, ppp)
        self.tracker.save(self.panels_dir / f"{self.country.code}_lineage_mapping.json")

        pairs = list(self.config.year_pairs)
        if self.config.max_workers == 1:
            return [self.process_pair(canonical, t0, t1) for t0, t1 in pairs]

        results: dict[tuple[int, int], PairResult] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {
                executor.submit(self.process_pair, canonical.copy(), t0, t1): (t0, t1)
                for t0, t1 in pairs
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        return [results[pair] for pair in pairs]

    def _load(self, name: str) -> pd.DataFrame | None:
        path = getattr(self.config, name)
        if path is None:
            return None
        logger.info(f"Reading {name}: {path}")
        return read_table(path)


def run_country(config: RunConfig, **tables: pd.DataFrame) -> list[PairResult]:
    """Convenience wrapper: validate the configuration and run all year pairs."""
    return HarmonizationPipeline(config).run(**tables)
