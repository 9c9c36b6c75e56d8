"""ECMAScript-Module analysis and lowering to CommonJS."""

from .analyzer import ModuleAnalysis, UnsupportedFeature, analyze
from .transformer import TransformOutcome, transform

__all__ = [
    "ModuleAnalysis",
    "TransformOutcome",
    "UnsupportedFeature",
    "analyze",
    "transform",
]
