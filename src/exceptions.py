"""
Exceptions raised by the harmonization pipeline.

Recoverable conditions (absent optional inputs, CPI merge gaps, skipped
income concepts) are logged and recorded by the lineage tracker instead.
"""

from __future__ import annotations


class HarmonizationError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(HarmonizationError):
    """Invalid run configuration. Raised before any processing starts."""


class MissingRequiredFieldError(HarmonizationError):
    """A field the country run cannot proceed without is absent."""

    def __init__(self, field: str, missing_columns: list[str], country_code: str = ""):
        self.field = field
        self.missing_columns = list(missing_columns)
        self.country_code = country_code
        where = f" for {country_code}" if country_code else ""
        super().__init__(
            f"Required field '{field}' cannot be built{where}: "
            f"missing columns {self.missing_columns}"
        )


class PanelStructureError(HarmonizationError):
    """A balanced individual does not have exactly one record per wave."""

    def __init__(self, violations: list[str]):
        self.violations = violations
        super().__init__(
            f"Panel structure check failed with {len(violations)} violations:\n"
            + "\n".join(violations[:20])
        )


class ConversionInvariantError(HarmonizationError):
    """A monetary measure is populated for the wrong employment type."""

    def __init__(self, column: str, n_violations: int):
        self.column = column
        self.n_violations = n_violations
        super().__init__(
            f"{column}: {n_violations} rows populated outside the allowed employment types"
        )


class NormalizationDriftError(HarmonizationError):
    """Transition matrix percentages do not sum to 100."""

    def __init__(self, dimension: str, total: float):
        self.dimension = dimension
        self.total = total
        super().__init__(f"Transition matrix '{dimension}' sums to {total:.4f}%, not 100%")
