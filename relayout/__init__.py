"""Convert text typed in the wrong keyboard layout."""

from .engine import (
    ConversionOrchestrator,
    ConversionOutcome,
    convert,
    detect_source_layout,
    find_wrong_layout_boundary,
    looks_like_wrong_layout,
)
from .layouts import REGISTRY, LayoutDefinition, LayoutRegistry, lookup

__version__ = '0.1.0'
