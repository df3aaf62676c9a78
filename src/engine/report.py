"""
Workbook export for transition matrices.

One sheet per dimension plus a summary sheet. Each dimension sheet holds the
labeled percent matrix (rows t0, columns t1) with a notes column documenting
the methodology and sample sizes.
"""

import logging
from pathlib import Path

import pandas as pd

from src.model.transitions import TransitionMatrix, TransitionResults

logger = logging.getLogger(__name__)

DIMENSION_TITLES = {
    "employment": "Employment status",
    "employment_type": "Employment type",
    "quintile": "Welfare quintile",
    "skill": "Occupational skill",
}


def report_filename(country_code: str, t0: int, t1: int) -> str:
    return f"{country_code.upper()}_transitions_{t0}_{t1}.xlsx"


def matrix_notes(matrix: TransitionMatrix, results: TransitionResults) -> list[str]:
    """Methodology and sample-size notes for one dimension sheet."""
    notes = [
        f"{DIMENSION_TITLES.get(matrix.dimension, matrix.dimension)} transitions, "
        f"{results.country_code} {results.t0} (rows) to {results.t1} (columns).",
        "Cells are percentages of total retained survey weight (t0 weight); all cells sum to 100.",
        "Individuals missing in both waves are excluded; a value missing in one wave is recoded to 0.",
        f"Unweighted N = {matrix.n_unweighted:,}; weighted N = {matrix.n_weighted:,.1f}.",
        f"Individuals recoded for one-wave missingness: {matrix.n_recoded:,}.",
    ]
    if matrix.dimension in ("employment_type", "skill"):
        notes.append("Category 0 also covers every wave in which the individual is not working.")
    if matrix.dimension == "quintile":
        notes.append("Quintile cut-points are computed separately for each wave from weighted welfare.")
    return notes


def export_transitions(results: TransitionResults, path: Path) -> Path:
    """
    Write transition matrices to an Excel workbook.

    Args:
        results: Output of TransitionAnalyzer.analyze
        path: Target .xlsx file (overwritten)

    Returns:
        Path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        summary = results.summary_frame()
        summary.insert(0, "country_code", results.country_code)
        summary.insert(1, "t0", results.t0)
        summary.insert(2, "t1", results.t1)
        summary.to_excel(writer, sheet_name="summary", index=False)

        for name, matrix in results.matrices.items():
            table = matrix.labeled().round(2)
            table.to_excel(writer, sheet_name=name)
            notes = pd.DataFrame({"notes": matrix_notes(matrix, results)})
            notes.to_excel(writer, sheet_name=name, startcol=len(table.columns) + 2, index=False)

    logger.info(f"Saved transition report to {path}")
    return path
