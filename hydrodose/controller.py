"""Proportional controller that turns an EC error into a nutrient dose."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_TOLERANCE = 50.0


@dataclass
class ECController:
    """Proportional EC controller.

    ``base_dose`` is the EC (µS/cm) reached by ``total_ml`` millilitres of
    nutrients, ``flow_rate`` is the pump flow in ml/s, ``volume`` is the
    reservoir volume in litres and ``kp`` the proportional gain.
    """

    base_dose: float = 0.0
    flow_rate: float = 0.0
    volume: float = 0.0
    total_ml: float = 0.0
    kp: float = 1.0

    def set_parameters(self, base_dose: float, flow_rate: float, volume: float, total_ml: float) -> None:
        """Set the four plant parameters at once."""
        self.base_dose = base_dose
        self.flow_rate = flow_rate
        self.volume = volume
        self.total_ml = total_ml

    def calculate_k(self) -> float:
        """Return EC gained per millilitre, or 1.0 when ``total_ml`` is not positive."""
        if self.total_ml > 0:
            return self.base_dose / self.total_ml
        return 1.0

    def calculate_dosage(self, ec_setpoint: float, ec_actual: float) -> float:
        """Return the millilitres to dose: ``(V / (k * q)) * e * Kp``, never negative."""
        error = ec_setpoint - ec_actual
        k = self.calculate_k()
        dosage = 0.0
        if k > 0 and self.flow_rate > 0:
            dosage = (self.volume / (k * self.flow_rate)) * error * self.kp
        return max(dosage, 0.0)

    def calculate_dosage_time(self, dosage_ml: float) -> float:
        """Return the pump run time in seconds for ``dosage_ml`` millilitres."""
        if self.flow_rate > 0:
            return dosage_ml / self.flow_rate
        return 0.0

    def needs_adjustment(self, ec_setpoint: float, ec_actual: float, tolerance: float = DEFAULT_TOLERANCE) -> bool:
        """Return True when the EC error exceeds ``tolerance``."""
        return abs(ec_setpoint - ec_actual) > tolerance