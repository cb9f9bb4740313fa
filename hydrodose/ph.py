"""pH probe reading with linear two-point calibration."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

SAMPLE_COUNT = 10
ADC_MAX = 4095.0
ADC_VREF = 3.3
_TRIM = 2


def trimmed_voltage(samples: Sequence[int]) -> float:
    """Convert ten raw ADC samples to a voltage, averaging the central six."""
    if len(samples) != SAMPLE_COUNT:
        raise ValueError(f"expected {SAMPLE_COUNT} samples, got {len(samples)}")
    central = sorted(samples)[_TRIM:SAMPLE_COUNT - _TRIM]
    return sum(central) * ADC_VREF / ADC_MAX / len(central)


class PHSensor:
    """pH sensor mapping probe voltage to pH with a straight line."""

    def __init__(self, sample_delay: float = 0.01) -> None:
        self.sample_delay = sample_delay
        self.cal_ph7: float | None = None
        self.cal_ph4: float | None = None
        self.cal_ph10: float | None = None
        self.use_ph10 = False
        self._slope: float | None = None
        self._intercept: float | None = None

    def calibrate(self, cal_ph7: float, cal_ph4: float, cal_ph10: float = 0.0, use_ph10: bool = False) -> None:
        """Fit the line through the pH 7 point and either the pH 4 or pH 10 point."""
        if use_ph10:
            if cal_ph7 == cal_ph10:
                raise ValueError("pH 7 and pH 10 calibration voltages must differ")
            slope = (7.0 - 10.0) / (cal_ph7 - cal_ph10)
            intercept = 10.0 - slope * cal_ph10
        else:
            if cal_ph4 == cal_ph7:
                raise ValueError("pH 4 and pH 7 calibration voltages must differ")
            slope = (4.0 - 7.0) / (cal_ph4 - cal_ph7)
            intercept = 7.0 - slope * cal_ph7
        self.cal_ph7, self.cal_ph4, self.cal_ph10 = cal_ph7, cal_ph4, cal_ph10
        self.use_ph10 = use_ph10
        self._slope, self._intercept = slope, intercept
        logger.info("pH calibration done")

    @property
    def calibrated(self) -> bool:
        return self._slope is not None

    def calculate_ph(self, voltage: float) -> float:
        """Return the pH for a probe voltage."""
        if self._slope is None or self._intercept is None:
            raise RuntimeError("pH sensor is not calibrated")
        return self._slope * voltage + self._intercept

    def _samples(self, read_analog: Callable[[], int]) -> list[int]:
        samples = []
        for _ in range(SAMPLE_COUNT):
            samples.append(read_analog())
            if self.sample_delay > 0:
                time.sleep(self.sample_delay)
        return samples

    def read_ph(self, read_analog: Callable[[], int]) -> float:
        """Take ten samples from ``read_analog`` and return the pH."""
        return self.calculate_ph(trimmed_voltage(self._samples(read_analog)))

    def format_ph(self, read_analog: Callable[[], int]) -> str:
        """Read the pH and return it as a ``pH = x.xx`` line."""
        return f"pH = {self.read_ph(read_analog):.2f}"