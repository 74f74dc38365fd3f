from .base import GradingResult
from .automatic import compute_automatic, is_auto_gradable
from .aggregate import (
    awarded_points, compute_aggregate, effective_score,
    validate_mark, validate_override,
)

__all__ = [
    'GradingResult', 'compute_automatic', 'is_auto_gradable',
    'awarded_points', 'compute_aggregate', 'effective_score',
    'validate_mark', 'validate_override',
]
