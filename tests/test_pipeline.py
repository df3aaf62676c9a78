"""
End-to-end tests: raw survey through panels, conversion and reports.
"""

import json

import pandas as pd
import pytest
import typer
from typer.testing import CliRunner

from config.settings import get_settings
from src.cli import app, parse_pairs
from src.data.countries import COUNTRIES
from src.data.schema_mapper import SchemaMapper
from src.engine.pipeline import HarmonizationPipeline, RunConfig, read_table, run_country
from src.exceptions import ConfigurationError, PanelStructureError
from src.model.panel_data import PanelConstructor, balanced_ids, load_panel
from src.model.transitions import TransitionAnalyzer
from tests.fixtures.synthetic_panel import (
    make_cpi,
    make_ppp,
    make_survey,
    three_person_survey,
    to_raw,
)


@pytest.fixture
def project_root(tmp_path, monkeypatch):
    """Settings rooted in a temporary directory."""
    monkeypatch.setenv("PROJECT_ROOT", str(tmp_path))
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture
def input_files(tmp_path):
    """Raw survey, CPI and PPP tables written to disk."""
    paths = {
        "raw": tmp_path / "inputs" / "raw.parquet",
        "cpi_imf": tmp_path / "inputs" / "cpi_imf.csv",
        "cpi_alt": tmp_path / "inputs" / "cpi_alt.csv",
        "ppp": tmp_path / "inputs" / "ppp.csv",
    }
    paths["raw"].parent.mkdir()
    to_raw(make_survey(), COUNTRIES["PER"]).to_parquet(paths["raw"], index=False)
    make_cpi().to_csv(paths["cpi_imf"], index=False)
    make_cpi(base=90.0).to_csv(paths["cpi_alt"], index=False)
    make_ppp().to_csv(paths["ppp"], index=False)
    return paths


class TestThreePersonScenario:
    """One individual in both waves, one only at t0, one only at t1."""

    @pytest.fixture
    def panel(self):
        per = COUNTRIES["PER"]
        canonical = SchemaMapper(per).map(to_raw(three_person_survey(), per))
        return PanelConstructor(per).construct(canonical, 2019, 2020)

    def test_only_person_in_both_waves_balanced(self, panel):
        assert balanced_ids(panel) == {"P1"}
        assert len(panel) == 4

    def test_single_transition(self, panel):
        matrices = TransitionAnalyzer().analyze(panel, "PER", 2019, 2020).matrices

        employment = matrices["employment"]
        assert employment.n_unweighted == 1
        assert employment.percent.loc[1, 0] == pytest.approx(100.0)
        assert employment.percent.drop(index=1, columns=0).to_numpy().sum() == pytest.approx(0.0)

        # Salaried, high skill -> not working
        assert matrices["employment_type"].percent.loc[3, 0] == pytest.approx(100.0)
        assert matrices["skill"].percent.loc[3, 0] == pytest.approx(100.0)


class TestHarmonizationPipeline:
    """Test the full country run."""

    @pytest.fixture
    def raw(self):
        return to_raw(make_survey(years=(2019, 2020, 2021)), COUNTRIES["PER"])

    @pytest.fixture
    def tables(self, raw):
        return {
            "raw": raw,
            "cpi_imf": make_cpi(),
            "cpi_alt": make_cpi(base=90.0),
            "ppp": make_ppp(),
        }

    def test_outputs_written(self, tmp_path, tables):
        config = RunConfig("PER", ((2019, 2020),), output_dir=tmp_path)
        results = run_country(config, **tables)

        assert len(results) == 1
        result = results[0]
        assert result.panel_path == tmp_path / "panels" / "PER_panel_2019_2020.parquet"
        assert result.report_path == tmp_path / "reports" / "PER_transitions_2019_2020.xlsx"
        assert result.panel_path.exists()
        assert result.report_path.exists()
        assert (tmp_path / "panels" / "PER_lineage_mapping.json").exists()
        assert (tmp_path / "panels" / "PER_lineage_2019_2020.json").exists()
        assert result.structure_violations == []

    def test_panel_carries_monetary_measures(self, tmp_path, tables):
        config = RunConfig("PER", ((2019, 2020),), output_dir=tmp_path)
        run_country(config, **tables)

        panel = load_panel("PER", 2019, 2020, tmp_path / "panels")
        for col in ("wage_ppp", "wage_ppp_imf", "wage_ppp_alt", "earnings_ppp", "time", "balanced_panel"):
            assert col in panel.columns
        salaried = (panel["employment_type"] == 3).fillna(False).astype(bool)
        assert (panel["wage_ppp"].notna() == (salaried & panel["hourly_wage_local"].notna())).all()

    def test_report_sheets(self, tmp_path, tables):
        config = RunConfig("PER", ((2019, 2020),), output_dir=tmp_path)
        result = run_country(config, **tables)[0]

        sheets = pd.read_excel(result.report_path, sheet_name=None)
        assert set(sheets) == {"summary", "employment", "employment_type", "quintile", "skill"}
        summary = sheets["summary"]
        assert summary["total_percent"].tolist() == pytest.approx([100.0] * 4, abs=0.01)

    def test_lineage_file_contents(self, tmp_path, tables):
        config = RunConfig("PER", ((2019, 2020),), output_dir=tmp_path)
        run_country(config, **tables)

        with open(tmp_path / "panels" / "PER_lineage_2019_2020.json") as f:
            lineage = json.load(f)
        fields = {record["field"] for record in lineage["fields"]}
        assert {"wage_ppp", "earnings_ppp"} <= fields

    def test_concurrent_pairs_match_sequential(self, tmp_path, tables):
        pairs = ((2019, 2020), (2020, 2021), (2019, 2021))
        sequential = run_country(RunConfig("PER", pairs, output_dir=tmp_path / "seq"), **tables)
        concurrent = run_country(
            RunConfig("PER", pairs, output_dir=tmp_path / "par", max_workers=3), **tables
        )

        assert [(r.t0, r.t1) for r in concurrent] == list(pairs)
        for a, b in zip(sequential, concurrent):
            for name, matrix in a.transitions.matrices.items():
                pd.testing.assert_frame_equal(matrix.percent, b.transitions.matrices[name].percent)
        for t0, t1 in pairs:
            assert (tmp_path / "par" / "panels" / f"PER_panel_{t0}_{t1}.parquet").exists()

    def test_missing_price_tables_skip_conversion(self, tmp_path, raw):
        config = RunConfig("PER", ((2019, 2020),), output_dir=tmp_path)
        result = run_country(config, raw=raw)[0]

        assert result.conversion.produced == []
        assert "wage_ppp" in result.conversion.skipped
        assert result.report_path.exists()

    def test_reads_input_paths(self, tmp_path, tables):
        input_path = tmp_path / "raw.parquet"
        cpi_path = tmp_path / "cpi.csv"
        ppp_path = tmp_path / "ppp.csv"
        tables["raw"].to_parquet(input_path, index=False)
        tables["cpi_imf"].to_csv(cpi_path, index=False)
        tables["ppp"].to_csv(ppp_path, index=False)

        config = RunConfig(
            "PER",
            ((2019, 2020),),
            input_path=input_path,
            cpi_imf_path=cpi_path,
            ppp_path=ppp_path,
            output_dir=tmp_path / "out",
        )
        result = HarmonizationPipeline(config).run()[0]

        assert result.conversion.primary_source["wage"] == "imf"
        assert "wage_ppp_alt" in result.conversion.skipped

    def test_no_input(self, tmp_path):
        pipeline = HarmonizationPipeline(RunConfig("PER", ((2019, 2020),), output_dir=tmp_path))
        with pytest.raises(ConfigurationError):
            pipeline.run()

    def test_duplicate_record_reported_when_not_strict(self, tmp_path):
        survey = three_person_survey()
        survey = pd.concat([survey, survey.iloc[[0]]], ignore_index=True)
        raw = to_raw(survey, COUNTRIES["PER"])

        result = run_country(RunConfig("PER", ((2019, 2020),), output_dir=tmp_path), raw=raw)[0]

        assert result.transitions is None
        assert result.report_path is None
        assert any("P1" in v for v in result.structure_violations)
        assert result.panel_path.exists()
        assert result.lineage.skipped("transitions")

    def test_duplicate_record_raises_when_strict(self, tmp_path):
        survey = three_person_survey()
        survey = pd.concat([survey, survey.iloc[[0]]], ignore_index=True)
        raw = to_raw(survey, COUNTRIES["PER"])

        config = RunConfig("PER", ((2019, 2020),), output_dir=tmp_path, strict_panels=True)
        with pytest.raises(PanelStructureError):
            run_country(config, raw=raw)

    def test_default_dirs_match_panel_loader(self, project_root, tables):
        config = RunConfig("PER", ((2019, 2020),))
        settings = get_settings()
        assert config.panels_dir == project_root / settings.panels_dir
        assert config.reports_dir == project_root / settings.reports_dir

        run_country(config, **tables)
        panel = load_panel("PER", 2019, 2020)
        assert "wage_ppp" in panel.columns


class TestRunConfig:
    """Test configuration validation before processing."""

    def test_valid(self):
        country = RunConfig("per", ((2019, 2020),)).validate()
        assert country.code == "PER"

    def test_unknown_country(self):
        with pytest.raises(ConfigurationError):
            RunConfig("XXX", ((2019, 2020),)).validate()

    def test_no_pairs(self):
        with pytest.raises(ConfigurationError):
            RunConfig("PER", ()).validate()

    def test_reversed_pair(self):
        with pytest.raises(ConfigurationError):
            RunConfig("PER", ((2020, 2019),)).validate()

    def test_missing_input_path(self, tmp_path):
        with pytest.raises(ConfigurationError):
            RunConfig("PER", ((2019, 2020),), input_path=tmp_path / "absent.parquet").validate()

    def test_workers(self):
        with pytest.raises(ConfigurationError):
            RunConfig("PER", ((2019, 2020),), max_workers=0).validate()

    def test_unsupported_input_format(self, tmp_path):
        path = tmp_path / "survey.json"
        path.write_text("{}")
        with pytest.raises(ConfigurationError):
            read_table(path)


class TestCLI:
    """Test command-line helpers."""

    def test_parse_pairs(self):
        assert parse_pairs(["2019:2020", "2019:2021"]) == ((2019, 2020), (2019, 2021))

    def test_parse_pairs_invalid(self):
        with pytest.raises(typer.Exit):
            parse_pairs(["2019-2020"])

    def test_countries_command(self):
        result = CliRunner().invoke(app, ["countries"])
        assert result.exit_code == 0
        for code in COUNTRIES:
            assert code in result.output

    def test_staged_commands(self, tmp_path, input_files):
        canonical_path = tmp_path / "PER_canonical.parquet"
        panel_dir = tmp_path / "panels"
        report_dir = tmp_path / "reports"
        runner = CliRunner()

        result = runner.invoke(app, [
            "harmonize", "PER", str(input_files["raw"]),
            "--cpi-imf", str(input_files["cpi_imf"]),
            "--cpi-alt", str(input_files["cpi_alt"]),
            "--ppp", str(input_files["ppp"]),
            "--output", str(canonical_path),
        ])
        assert result.exit_code == 0, result.output
        assert "cpi_at_wave_imf" in pd.read_parquet(canonical_path).columns

        result = runner.invoke(app, [
            "build-panels", "PER", str(canonical_path),
            "--pair", "2019:2020", "--panel-dir", str(panel_dir),
        ])
        assert result.exit_code == 0, result.output
        panel = load_panel("PER", 2019, 2020, panel_dir)
        for col in ("wage_ppp", "wage_ppp_imf", "wage_ppp_alt", "earnings_ppp"):
            assert col in panel.columns
        assert panel["wage_ppp"].notna().any()

        result = runner.invoke(app, [
            "transitions", "PER", "--pair", "2019:2020",
            "--panel-dir", str(panel_dir), "--report-dir", str(report_dir),
        ])
        assert result.exit_code == 0, result.output
        assert (report_dir / "PER_transitions_2019_2020.xlsx").exists()

    def test_harmonize_missing_price_table(self, tmp_path, input_files):
        result = CliRunner().invoke(app, [
            "harmonize", "PER", str(input_files["raw"]),
            "--cpi-imf", str(tmp_path / "absent.csv"),
            "--output", str(tmp_path / "canonical.parquet"),
        ])
        assert result.exit_code == 1
        assert not (tmp_path / "canonical.parquet").exists()

    def test_run_then_transitions_with_default_dirs(self, project_root, input_files):
        runner = CliRunner()

        result = runner.invoke(app, [
            "run", "PER", str(input_files["raw"]), "--pair", "2019:2020",
            "--cpi-imf", str(input_files["cpi_imf"]), "--ppp", str(input_files["ppp"]),
        ])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["transitions", "PER", "--pair", "2019:2020", "--all-members"])
        assert result.exit_code == 0, result.output

        settings = get_settings()
        assert (project_root / settings.panels_dir / "PER_panel_2019_2020.parquet").exists()
        assert (project_root / settings.reports_dir / "PER_transitions_2019_2020.xlsx").exists()

    def test_transitions_without_panel(self, tmp_path):
        result = CliRunner().invoke(app, [
            "transitions", "PER", "--pair", "2019:2020", "--panel-dir", str(tmp_path),
        ])
        assert result.exit_code == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
