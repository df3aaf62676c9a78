"""
Derived-field lineage for the harmonization pipeline.

Tracks, per stage and per derived field, whether the field was produced,
produced with gaps, or skipped because its inputs were absent. Every skip
carries the list of missing inputs so that a gap in the output can be traced
back to a specific field rather than an opaque run failure.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any
import json

import pandas as pd

logger = logging.getLogger(__name__)


class FieldStatus(Enum):
    """Outcome of building one derived field."""
    PRODUCED = "produced"  # Built with full input coverage
    PARTIAL = "partial"  # Built, but missing for some rows
    SKIPPED = "skipped"  # Inputs absent, field left missing
    FLAGGED = "flagged"  # Built, but a check on it raised a warning


@dataclass
class FieldRecord:
    """Record of one derived field in one stage."""

    stage: str
    field_name: str
    status: FieldStatus
    timestamp: datetime
    rows: int = 0
    coverage_pct: float = 0.0
    missing_inputs: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "stage": self.stage,
            "field": self.field_name,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "rows": self.rows,
            "coverage_pct": self.coverage_pct,
            "missing_inputs": self.missing_inputs,
            "notes": self.notes,
        }


class DataLineageTracker:
    """
    Tracks derived-field lineage for one run.

    A tracker is owned by a single (country, year pair) run; there is no
    shared instance.
    """

    def __init__(self, run_label: str = ""):
        self.run_label = run_label
        self.records: dict[tuple[str, str], FieldRecord] = {}
        self._warnings: list[str] = []

    def record_field(
        self,
        stage: str,
        field_name: str,
        status: FieldStatus,
        rows: int = 0,
        coverage_pct: float = 0.0,
        missing_inputs: list[str] | None = None,
        notes: list[str] | None = None,
    ) -> FieldRecord:
        """Record the outcome of one derived field."""
        if status == FieldStatus.SKIPPED:
            warning = f"SKIPPED: {stage}.{field_name} (missing inputs: {missing_inputs or []})"
            self._warnings.append(warning)
            logger.warning(warning)
        elif status == FieldStatus.FLAGGED:
            warning = f"FLAGGED: {stage}.{field_name}: {'; '.join(notes or [])}"
            self._warnings.append(warning)

        record = FieldRecord(
            stage=stage,
            field_name=field_name,
            status=status,
            timestamp=datetime.now(),
            rows=rows,
            coverage_pct=coverage_pct,
            missing_inputs=list(missing_inputs or []),
            notes=list(notes or []),
        )
        self.records[(stage, field_name)] = record
        return record

    def record_series(self, stage: str, field_name: str, values: pd.Series) -> FieldRecord:
        """Record a built field, classifying it by its non-missing share."""
        rows = len(values)
        coverage = float(values.notna().mean() * 100) if rows else 0.0
        status = FieldStatus.PRODUCED if coverage == 100.0 else FieldStatus.PARTIAL
        logger.debug(f"{stage}.{field_name}: {coverage:.1f}% coverage over {rows} rows")
        return self.record_field(stage, field_name, status, rows=rows, coverage_pct=coverage)

    def skipped(self, stage: str | None = None) -> list[FieldRecord]:
        """Records of skipped fields, optionally for one stage."""
        return [
            r for r in self.records.values()
            if r.status == FieldStatus.SKIPPED and (stage is None or r.stage == stage)
        ]

    def get_warnings(self) -> list[str]:
        """Get all warnings."""
        return self._warnings.copy()

    def generate_report(self) -> str:
        """Generate a human-readable lineage report."""
        lines = []
        lines.append("=" * 70)
        lines.append(f"FIELD LINEAGE REPORT {self.run_label}".rstrip())
        lines.append("=" * 70)
        lines.append(f"{'Stage':<12} {'Field':<28} {'Status':<10} {'Coverage':>9}")
        lines.append("-" * 70)

        for (stage, name), record in self.records.items():
            lines.append(
                f"{stage:<12} {name:<28} {record.status.value:<10} "
                f"{record.coverage_pct:>8.1f}%"
            )
            if record.missing_inputs:
                lines.append(f"{'':<12}   missing: {', '.join(record.missing_inputs)}")
            for note in record.notes:
                lines.append(f"{'':<12}   - {note}")

        if self._warnings:
            lines.append("")
            lines.append("WARNINGS:")
            lines.append("-" * 50)
            for warning in self._warnings:
                lines.append(f"  ! {warning}")

        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Convert lineage to dictionary for serialization."""
        return {
            "run": self.run_label,
            "generated": datetime.now().isoformat(),
            "warnings": self._warnings,
            "fields": [record.to_dict() for record in self.records.values()],
        }

    def save(self, filepath: str | Path) -> None:
        """Save lineage to JSON file."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Saved field lineage to {filepath}")
