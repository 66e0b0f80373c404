# backend/gauge_conversion_engine.py

"""
Gauge Conversion Engine - cm reading to litres

This engine is responsible for:
- Coercing the raw submitted value to a number
- Range validation against MIN_CM..MAX_CM
- Resolving litres from the calibration snapshot

This engine MUST NOT:
- Touch storage
- Interpolate or guess volumes for missing heights

INVARIANTS:
1) Invalid input never reaches the calibration table
2) A calibration gap is a CalibrationNotFoundError, never InvalidInputError
3) Same reading + same table snapshot -> same volume
"""

import math
from typing import Any, Union

from pydantic import BaseModel

from calibration_table import CalibrationTable, MAX_CM, MIN_CM
from gauge_errors import InvalidInputError

Number = Union[int, float]


class GaugeReading(BaseModel):
    """Result of a successful conversion"""
    value_cm: Number
    volume_l: Number

    @property
    def message(self) -> str:
        return f"{self.value_cm} cm ➜ {self.volume_l} L"


def coerce_cm(raw_value: Any) -> Number:
    """
    Coerce a submitted reading to a number in range.

    Numeric strings are accepted ("150" -> 150); integral floats are
    normalized to int.

    Raises:
        InvalidInputError: If missing, not numeric, or out of range
    """
    if raw_value is None:
        raise InvalidInputError("value_cm is required", field="value_cm")

    # bool is an int subclass; a checkbox value is not a gauge reading
    if isinstance(raw_value, bool):
        raise InvalidInputError(f"Invalid cm value: {raw_value!r}", field="value_cm")

    if isinstance(raw_value, (int, float)):
        value = raw_value
    elif isinstance(raw_value, str):
        text = raw_value.strip()
        try:
            value = float(text) if text else math.nan
        except ValueError:
            value = math.nan
    else:
        raise InvalidInputError(f"Invalid cm value: {raw_value!r}", field="value_cm")

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise InvalidInputError(f"Invalid cm value: {raw_value!r}", field="value_cm")
        if value.is_integer():
            value = int(value)

    if value < MIN_CM or value > MAX_CM:
        raise InvalidInputError(
            f"Invalid or out-of-range cm value ({MIN_CM}-{MAX_CM} cm)",
            field="value_cm"
        )
    return value


class GaugeConversionEngine:
    """
    Stateless conversion over a calibration table snapshot.
    """

    def __init__(self, table: CalibrationTable):
        self.table = table

    def convert(self, raw_value: Any) -> GaugeReading:
        """
        Convert a raw gauge reading to litres.

        Raises:
            InvalidInputError: If the value is not a number in range
            CalibrationNotFoundError: If the table has no entry for it
        """
        value_cm = coerce_cm(raw_value)
        volume_l = self.table.lookup(value_cm)
        return GaugeReading(value_cm=value_cm, volume_l=volume_l)
