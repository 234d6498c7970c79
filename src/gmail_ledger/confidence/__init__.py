"""
Confidence scoring module.

Turns extraction signals into a low / medium / high label.
"""

from .scorer import ConfidenceScorer, ConfidenceSignals

__all__ = [
    "ConfidenceScorer",
    "ConfidenceSignals",
]
