from dataclasses import dataclass
from decimal import Decimal


@dataclass
class GradingResult:
    points_awarded: Decimal
    max_points: Decimal
    is_correct: bool
    grading_method: str
