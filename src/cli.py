"""
CLI for LAC labor-market panel harmonization.

Usage:
    labpanel countries
    labpanel harmonize <country> <input> --cpi-imf ... --ppp ...
    labpanel build-panels <country> <canonical> --pair 2019:2021
    labpanel transitions <country> --pair 2019:2021
    labpanel run <country> <input> --pair 2019:2021 --cpi-imf ... --ppp ...
"""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from src.exceptions import HarmonizationError

app = typer.Typer(
    name="labpanel",
    help="Harmonized LAC household panels and labor-market transition matrices",
)
console = Console()


def setup_logging(level: str | None = None) -> None:
    """Configure logging with rich output."""
    from config.settings import get_settings

    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def parse_pairs(pairs: List[str]) -> tuple[tuple[int, int], ...]:
    """Parse 't0:t1' strings into year pairs."""
    parsed = []
    for pair in pairs:
        try:
            t0, t1 = (int(part) for part in pair.split(":"))
        except ValueError:
            console.print(f"[red]Invalid year pair '{pair}', expected t0:t1[/red]")
            raise typer.Exit(1)
        parsed.append((t0, t1))
    return tuple(parsed)


def _country_or_exit(code: str):
    from src.data.countries import get_country

    try:
        return get_country(code)
    except HarmonizationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def countries():
    """List configured countries and their panel rules."""
    from src.data.countries import COUNTRIES

    table = Table(title="Configured countries")
    table.add_column("ISO")
    table.add_column("Survey")
    table.add_column("Membership rule")
    table.add_column("Sector variant")
    table.add_column("ISCO digits", justify="right")
    table.add_column("Primary CPI")

    for code, country in sorted(COUNTRIES.items()):
        table.add_row(
            code,
            country.survey,
            country.membership_rule.value,
            country.sector_variant.value,
            str(country.isco_digits),
            "SEDLAC" if country.alt_cpi_primary else "IMF",
        )
    console.print(table)


@app.command()
def harmonize(
    country: str = typer.Argument(..., help="ISO3 country code"),
    input_path: Path = typer.Argument(..., help="Raw survey table (parquet, csv or dta)"),
    cpi_imf: Optional[Path] = typer.Option(None, help="Monthly IMF CPI table"),
    cpi_alt: Optional[Path] = typer.Option(None, help="Monthly SEDLAC CPI table"),
    ppp: Optional[Path] = typer.Option(None, help="PPP conversion table"),
    output: Optional[Path] = typer.Option(None, help="Output parquet path"),
):
    """Map a raw survey table to canonical person-year records with CPI and PPP references."""
    setup_logging()

    from config.settings import get_settings
    from src.data.data_lineage import DataLineageTracker
    from src.engine.pipeline import harmonize_survey, read_table

    config = _country_or_exit(country)
    for path in (input_path, cpi_imf, cpi_alt, ppp):
        if path is not None and not path.exists():
            console.print(f"[red]Input not found: {path}[/red]")
            raise typer.Exit(1)

    tracker = DataLineageTracker(f"{config.code} mapping")
    try:
        canonical = harmonize_survey(
            config,
            read_table(input_path),
            cpi_imf=read_table(cpi_imf) if cpi_imf else None,
            cpi_alt=read_table(cpi_alt) if cpi_alt else None,
            ppp=read_table(ppp) if ppp else None,
            tracker=tracker,
        )
    except HarmonizationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if output is None:
        settings = get_settings()
        output = settings.project_root / settings.processed_data_dir / f"{config.code}_canonical.parquet"
    output.parent.mkdir(parents=True, exist_ok=True)
    canonical.to_parquet(output, index=False)

    console.print(f"Saved {len(canonical):,} person-years to {output}")
    console.print(tracker.generate_report())


@app.command()
def build_panels(
    country: str = typer.Argument(..., help="ISO3 country code"),
    canonical_path: Path = typer.Argument(..., help="Canonical parquet from 'harmonize'"),
    pair: List[str] = typer.Option(..., "--pair", help="Year pair t0:t1 (repeatable)"),
    panel_dir: Optional[Path] = typer.Option(None, help="Directory for panel files"),
):
    """Build balanced two-wave panels and convert monetary measures."""
    setup_logging()

    import pandas as pd
    from src.model.monetary import MonetaryConverter
    from src.model.panel_data import PanelConstructor

    config = _country_or_exit(country)
    if not canonical_path.exists():
        console.print("[red]Canonical data not found. Run 'harmonize' first.[/red]")
        raise typer.Exit(1)
    canonical = pd.read_parquet(canonical_path)

    for t0, t1 in parse_pairs(pair):
        console.print(f"[bold]Building {config.code} panel {t0}-{t1}...[/bold]")
        constructor = PanelConstructor(config)
        try:
            panel = constructor.construct(canonical, t0, t1)
        except HarmonizationError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

        violations = constructor.validate_structure(panel)
        if violations:
            console.print(f"[yellow]{len(violations)} panel structure violations[/yellow]")

        report = MonetaryConverter(config).convert(panel)
        console.print(report.summary())
        path = constructor.save_panel(panel, t0, t1, panel_dir)
        console.print(f"Saved panel to {path}")


@app.command()
def transitions(
    country: str = typer.Argument(..., help="ISO3 country code"),
    pair: List[str] = typer.Option(..., "--pair", help="Year pair t0:t1 (repeatable)"),
    panel_dir: Optional[Path] = typer.Option(None, help="Directory with panel files"),
    report_dir: Optional[Path] = typer.Option(None, help="Directory for workbooks"),
    all_members: bool = typer.Option(False, help="Tabulate all members, not only household heads"),
):
    """Compute transition matrices from saved panels."""
    setup_logging()

    from config.settings import get_settings
    from src.engine.report import export_transitions, report_filename
    from src.model.panel_data import load_panel
    from src.model.transitions import TransitionAnalyzer

    config = _country_or_exit(country)
    settings = get_settings()
    report_dir = report_dir or settings.project_root / settings.reports_dir
    analyzer = TransitionAnalyzer(heads_only=not all_members)

    for t0, t1 in parse_pairs(pair):
        try:
            panel = load_panel(config.code, t0, t1, panel_dir)
        except FileNotFoundError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

        try:
            results = analyzer.analyze(panel, config.code, t0, t1)
        except HarmonizationError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        for name, matrix in results.matrices.items():
            console.print(f"\n[bold]{name}[/bold]")
            console.print(matrix.labeled().round(2).to_string())
        path = export_transitions(results, report_dir / report_filename(config.code, t0, t1))
        console.print(f"\nSaved report to {path}")


@app.command()
def run(
    country: str = typer.Argument(..., help="ISO3 country code"),
    input_path: Path = typer.Argument(..., help="Raw survey table"),
    pair: List[str] = typer.Option(..., "--pair", help="Year pair t0:t1 (repeatable)"),
    cpi_imf: Optional[Path] = typer.Option(None, help="Monthly IMF CPI table"),
    cpi_alt: Optional[Path] = typer.Option(None, help="Monthly SEDLAC CPI table"),
    ppp: Optional[Path] = typer.Option(None, help="PPP conversion table"),
    output_dir: Optional[Path] = typer.Option(None, help="Output directory"),
    workers: int = typer.Option(1, help="Year pairs processed concurrently"),
    strict: bool = typer.Option(False, help="Fail on panel structure violations"),
):
    """Run the full pipeline for one country."""
    setup_logging()

    from src.engine.pipeline import RunConfig, run_country

    config = RunConfig(
        country_code=country,
        year_pairs=parse_pairs(pair),
        input_path=input_path,
        cpi_imf_path=cpi_imf,
        cpi_alt_path=cpi_alt,
        ppp_path=ppp,
        output_dir=output_dir,
        max_workers=workers,
        strict_panels=strict,
    )

    try:
        results = run_country(config)
    except HarmonizationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"{country.upper()} transitions")
    table.add_column("Pair")
    table.add_column("Balanced N", justify="right")
    table.add_column("Structure issues", justify="right")
    table.add_column("Skipped measures")
    table.add_column("Report")
    for result in results:
        if result.transitions is None:
            balanced = "-"
        else:
            balanced = f"{result.transitions.matrices['employment'].n_unweighted:,}"
        table.add_row(
            f"{result.t0}-{result.t1}",
            balanced,
            str(len(result.structure_violations)),
            ", ".join(result.conversion.skipped) or "-",
            str(result.report_path or "not written"),
        )
    console.print(table)


if __name__ == "__main__":
    app()
