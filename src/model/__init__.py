"""
Panel construction, monetary conversion and transition modules.
"""

from src.model.panel_data import PanelConstructor, balanced_ids, load_panel, panel_filename
from src.model.monetary import ConversionReport, MonetaryConverter, ppp_deflator
from src.model.transitions import (
    TransitionAnalyzer,
    TransitionMatrix,
    TransitionResults,
    weighted_quintiles,
)

__all__ = [
    "PanelConstructor",
    "balanced_ids",
    "load_panel",
    "panel_filename",
    "ConversionReport",
    "MonetaryConverter",
    "ppp_deflator",
    "TransitionAnalyzer",
    "TransitionMatrix",
    "TransitionResults",
    "weighted_quintiles",
]
