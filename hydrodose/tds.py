"""TDS/EC probe reading with median filtering and temperature compensation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

SAMPLE_COUNT = 30
ADC_MAX = 4095.0
SAMPLE_INTERVAL = 0.040
COMPUTE_INTERVAL = 0.800
MAX_TDS = 1000.0
REFERENCE_TEMPERATURE = 25.0


def median(values: Sequence[float]) -> float:
    """Return the median; the mean of the two middle values for even lengths."""
    if not values:
        raise ValueError("median of an empty sequence")
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return float(ordered[middle])
    return (ordered[middle] + ordered[middle - 1]) / 2.0


def compute_tds(voltage: float, temperature: float, calibration_factor: float) -> float:
    """Return the raw TDS in ppm for a probe voltage at a water temperature."""
    coefficient = 1.0 + 0.02 * (temperature - REFERENCE_TEMPERATURE)
    v = voltage / coefficient
    return (133.42 * v**3 - 255.86 * v**2 + 857.39 * v) * 0.5 * calibration_factor


class TDSReader:
    """Samples a TDS probe every 40 ms and recomputes TDS every 800 ms."""

    def __init__(
        self,
        read_analog: Callable[[], int],
        vref: float,
        calibration_factor: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._read_analog = read_analog
        self.vref = vref
        self.calibration_factor = calibration_factor
        self._clock = clock
        self.temperature = REFERENCE_TEMPERATURE
        self.average_voltage = 0.0
        self._tds = 0.0
        self._buffer = [0] * SAMPLE_COUNT
        self._index = 0
        self._last_sample: float | None = None
        self._last_compute: float | None = None

    def update_temperature(self, temperature: float) -> None:
        """Set the water temperature used for compensation."""
        self.temperature = temperature

    def read_tds(self) -> float | None:
        """Take a sample and recompute TDS when due; return the new TDS if recomputed."""
        now = self._clock()
        if self._last_sample is None:
            self._last_sample = now
        if now - self._last_sample > SAMPLE_INTERVAL:
            self._last_sample = now
            self._buffer[self._index] = self._read_analog()
            self._index = (self._index + 1) % SAMPLE_COUNT

        now = self._clock()
        if self._last_compute is None:
            self._last_compute = now
        if now - self._last_compute <= COMPUTE_INTERVAL:
            return None
        self._last_compute = now

        self.average_voltage = median(self._buffer) * (self.vref / ADC_MAX)
        raw = compute_tds(self.average_voltage, self.temperature, self.calibration_factor)
        self._tds = raw if 0 <= raw <= MAX_TDS else 0.0
        logger.debug(
            "Voltage: %.3fV | TDS Raw: %.2f | TDS Final: %.0f ppm | EC: %.0f uS/cm",
            self.average_voltage,
            raw,
            self._tds,
            self.ec_value,
        )
        return self._tds

    @property
    def tds_value(self) -> float:
        """Last accepted TDS in ppm."""
        return self._tds

    @property
    def ec_value(self) -> float:
        """Electrical conductivity in µS/cm, twice the TDS."""
        return self._tds * 2