"""
Run orchestration and report export.
"""

from src.engine.pipeline import (
    HarmonizationPipeline,
    PairResult,
    RunConfig,
    harmonize_survey,
    run_country,
)
from src.engine.report import export_transitions

__all__ = [
    "HarmonizationPipeline",
    "PairResult",
    "RunConfig",
    "harmonize_survey",
    "run_country",
    "export_transitions",
]
