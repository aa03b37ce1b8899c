"""
Feature range validation for incoming readings.

Ranges are checked here rather than on the SensorFeatures model so that a
rejected reading reports every offending field at once.
"""

import math
from typing import Dict, List, Optional, Tuple

from geosafe.exceptions import ValidationError
from geosafe.models.readings import SensorFeatures


# (minimum, maximum); None means no upper bound. Values must always be finite.
FEATURE_RANGES: Dict[str, Tuple[float, Optional[float]]] = {
    "rainfall_mm": (0.0, 1000.0),
    "slope_angle": (0.0, 90.0),
    "soil_saturation": (0.0, 1.0),
    "vegetation_cover": (0.0, 1.0),
    "earthquake_activity": (0.0, 10.0),
    "proximity_to_water": (0.0, None),
    "landslide": (0.0, 1.0),
}


def _describe(minimum: float, maximum: Optional[float]) -> str:
    if maximum is None:
        return f">= {minimum:g}"
    return f"[{minimum:g}, {maximum:g}]"


def find_range_violations(features: SensorFeatures) -> List[str]:
    """
    List every feature outside its allowed range.

    Args:
        features: Features to check.

    Returns:
        List[str]: One message per offending field, in FEATURE_RANGES order.
    """
    violations: List[str] = []
    for field, (minimum, maximum) in FEATURE_RANGES.items():
        value = getattr(features, field)
        if math.isnan(value):
            violations.append(f"{field}: value is not a number")
        elif math.isinf(value):
            violations.append(f"{field}: value is not finite")
        elif value < minimum or (maximum is not None and value > maximum):
            violations.append(
                f"{field}: {value:g} outside allowed range {_describe(minimum, maximum)}"
            )
    return violations


def validate_features(features: SensorFeatures) -> None:
    """
    Reject features with out-of-range values.

    Raises:
        ValidationError: Listing every violation.
    """
    violations = find_range_violations(features)
    if violations:
        raise ValidationError(
            f"Reading has {len(violations)} out-of-range feature(s)",
            errors=violations,
        )
