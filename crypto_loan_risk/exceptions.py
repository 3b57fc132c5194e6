"""Error kinds raised by the risk engine and boundary validators."""

import math
from typing import Any

import numpy as np


class RiskEngineError(Exception):
    """Base class for all risk engine errors."""


class InvalidParameter(RiskEngineError, ValueError):
    """A numeric input is negative, NaN, non-finite or out of range."""


class IllConditionedCorrelation(RiskEngineError, ValueError):
    """A correlation matrix could not be Cholesky-decomposed."""


def require_finite(name: str, value: Any) -> float:
    """Return ``value`` as a float, rejecting NaN and infinities."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise InvalidParameter(f"{name} must be finite, got {value!r}")
    return number


def require_non_negative(name: str, value: Any) -> float:
    number = require_finite(name, value)
    if number < 0:
        raise InvalidParameter(f"{name} must be non-negative, got {number}")
    return number


def require_positive(name: str, value: Any) -> float:
    number = require_finite(name, value)
    if number <= 0:
        raise InvalidParameter(f"{name} must be positive, got {number}")
    return number


def require_probability(name: str, value: Any) -> float:
    number = require_finite(name, value)
    if not 0 <= number <= 1:
        raise InvalidParameter(f"{name} must be between 0 and 1, got {number}")
    return number


def require_finite_array(name: str, values: Any) -> np.ndarray:
    """Return ``values`` as a 1-d float array with every entry finite."""
    array = np.asarray(values, dtype=float)
    if array.ndim != 1:
        raise InvalidParameter(f"{name} must be one-dimensional, got shape {array.shape}")
    if not np.all(np.isfinite(array)):
        raise InvalidParameter(f"{name} contains non-finite values")
    return array
