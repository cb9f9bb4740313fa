"""Top-level hydroponic controller: sensors, display, relays and EC dosing."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence

from hydrodose.controller import DEFAULT_TOLERANCE, ECController
from hydrodose.dosing import (
    MAX_NUTRIENTS,
    DosingSequence,
    Nutrient,
    NutrientProportion,
    RelayBank,
    RelayWriter,
    build_proportional_plan,
    default_proportions,
    parse_web_distribution,
    parse_web_proportions,
)
from hydrodose.ph import PHSensor
from hydrodose.tds import TDSReader

logger = logging.getLogger(__name__)

LCD_WIDTH = 16
SENSOR_INTERVAL_MS = 500
EC_CHECK_INTERVAL_MS = 30_000
TELEMETRY_INTERVAL_MS = 30_000
STATUS_INTERVAL_MS = 5_000
MIN_AUTO_DOSAGE_ML = 0.1
TEMPERATURE_ERROR = -127.0
DEFAULT_PH_CALIBRATION = (2.56, 3.3, 2.05, False)

Display = Callable[[Sequence[str]], None]
Telemetry = Callable[[float, float, float], None]


def _place(row: list[str], column: int, text: str) -> None:
    for offset, char in enumerate(text):
        position = column + offset
        if 0 <= position < LCD_WIDTH:
            row[position] = char


class HydroControl:
    """Reads the probes, drives the pumps and runs automatic EC correction.

    Hardware is supplied as callables: ``relay_writer(expander, pin, level)``,
    ``read_temperature()`` in °C, ``ph_analog()`` raw ADC counts, a
    :class:`TDSReader`, ``display(lines)`` and ``telemetry(temp, ph, ec)``.
    ``clock`` returns seconds.
    """

    def __init__(
        self,
        *,
        relay_writer: RelayWriter | None = None,
        read_temperature: Callable[[], float] | None = None,
        ph_sensor: PHSensor | None = None,
        ph_analog: Callable[[], int] | None = None,
        tds_reader: TDSReader | None = None,
        display: Display | None = None,
        telemetry: Telemetry | None = None,
        clock: Callable[[], float] = time.monotonic,
        ec_controller: ECController | None = None,
    ) -> None:
        self._clock = clock
        self._display = display
        self._telemetry = telemetry
        self._read_temperature = read_temperature
        self._ph_analog = ph_analog
        if ph_sensor is None and ph_analog is not None:
            ph_sensor = PHSensor()
            ph_sensor.calibrate(*DEFAULT_PH_CALIBRATION)
        self.ph_sensor = ph_sensor
        self.tds_reader = tds_reader

        self.temperature = 0.0
        self.ph = 7.0
        self.tds = 0.0
        self.ec = 0.0

        self.relays = RelayBank(relay_writer, clock)
        self.sequence = DosingSequence(self.relays, on_message=self.show_message)
        self.ec_controller = ec_controller if ec_controller is not None else ECController()
        self.ec_setpoint = 0.0
        self.auto_ec_enabled = False
        self.auto_ec_interval_seconds = 0
        self.proportions: list[NutrientProportion] = default_proportions()
        self.screen: tuple[str, ...] = ()

        self._last_ec_check = 0.0
        self._last_sensor_read = 0.0
        self._last_telemetry = 0.0
        self._last_status = 0.0
        self._last_no_adjust_log = 0.0

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    @property
    def relay_states(self) -> tuple[bool, ...]:
        """On/off state of the eight relays."""
        return self.relays.states()

    # ----- main loop -------------------------------------------------------

    def update(self) -> None:
        """Run one pass of the control loop."""
        now = self._now_ms()
        if now - self._last_sensor_read >= SENSOR_INTERVAL_MS:
            self._last_sensor_read = now
            self.update_sensors()

        self._show(self.display_lines())
        self.check_auto_ec()
        self.sequence.process(self._now_ms())

        if now - self._last_telemetry >= TELEMETRY_INTERVAL_MS:
            self._last_telemetry = now
            if self._telemetry is not None:
                self._telemetry(self.temperature, self.ph, self.ec)

        if now - self._last_status > STATUS_INTERVAL_MS:
            self._last_status = now
            self._log_status()

    def _log_status(self) -> None:
        logger.debug(
            "Temperature %.1f C | pH %.2f | TDS %.0f ppm | EC %.0f uS/cm",
            self.temperature, self.ph, self.tds, self.ec,
        )
        if self.auto_ec_enabled:
            logger.debug("EC setpoint %.0f uS/cm, auto EC active", self.ec_setpoint)
        for number, on in enumerate(self.relay_states, start=1):
            logger.debug("Relay %d: %s", number, "ON" if on else "OFF")

    def update_sensors(self) -> None:
        """Read every probe, keeping only plausible values."""
        if self._read_temperature is not None:
            reading = self._read_temperature()
            if reading != TEMPERATURE_ERROR and 0 <= reading <= 50:
                self.temperature = reading

        if self.ph_sensor is not None and self._ph_analog is not None:
            reading = self.ph_sensor.read_ph(self._ph_analog)
            if 0 <= reading <= 14:
                self.ph = reading

        if self.tds_reader is not None:
            self.tds_reader.update_temperature(self.temperature)
            self.tds_reader.read_tds()
            reading = self.tds_reader.tds_value
            if 0 <= reading <= 2000:
                self.tds = reading
                self.ec = self.tds_reader.ec_value

    # ----- display ---------------------------------------------------------

    def display_lines(self) -> tuple[str, str]:
        """Return the two 16-character LCD lines for the current readings."""
        top = [" "] * LCD_WIDTH
        temp_text = f"Temp:{self.temperature:.1f}°C"
        _place(top, max((LCD_WIDTH - len(temp_text)) // 2, 0), temp_text)

        bottom = [" "] * LCD_WIDTH
        _place(bottom, 0, f"pH:{self.ph:.2f}")
        ec_text = f"EC:{self.ec:.0f}"
        _place(bottom, max(LCD_WIDTH - len(ec_text), 0), ec_text)
        return "".join(top), "".join(bottom)

    def _show(self, lines: Sequence[str]) -> None:
        self.screen = tuple(lines)
        if self._display is not None:
            self._display(self.screen)

    def show_message(self, msg: str) -> None:
        """Clear the display and show a message."""
        self._show((msg,))

    # ----- automatic EC ----------------------------------------------------

    def check_auto_ec(self) -> bool:
        """Start a proportional dosage when due and needed; return whether one started."""
        if not self.auto_ec_enabled:
            return False
        now = self._now_ms()
        if now - self._last_ec_check < EC_CHECK_INTERVAL_MS:
            return False
        self._last_ec_check = now

        if self.sequence.is_active():
            logger.warning("Auto EC: dosing already active - waiting")
            return False

        if not self.ec_controller.needs_adjustment(self.ec_setpoint, self.ec):
            if now - self._last_no_adjust_log > 60_000:
                self._last_no_adjust_log = now
                logger.info(
                    "Auto EC: no adjustment needed (error %.0f uS/cm, tolerance %.0f uS/cm)",
                    abs(self.ec_setpoint - self.ec), DEFAULT_TOLERANCE,
                )
            return False

        dosage = self.ec_controller.calculate_dosage(self.ec_setpoint, self.ec)
        if dosage <= MIN_AUTO_DOSAGE_ML:
            logger.info("Auto EC: dosage too small (%.3f ml) - ignored", dosage)
            return False

        logger.info(
            "Auto EC dosing: EC %.0f, setpoint %.0f, dosage %.2f ml over %.1f s",
            self.ec, self.ec_setpoint, dosage, self.ec_controller.calculate_dosage_time(dosage),
        )
        started = self.start_dynamic_sequential_dosage(dosage, self.ec_setpoint, self.ec)
        self.show_message("Auto EC: Seq. Ativada")
        return started

    # ----- relays ----------------------------------------------------------

    def toggle_relay(self, relay: int, duration_ms: int = 0) -> bool:
        """Flip a relay (index 0-7); return its new state."""
        return self.relays.toggle(relay, duration_ms)

    def activate_relay(self, relay_index: int, duration_ms: int) -> bool:
        """Flip a relay with a duration; return its new state."""
        return self.toggle_relay(relay_index, duration_ms)

    def deactivate_relay(self, relay_index: int) -> None:
        """Switch a relay off and clear its timer."""
        self.relays.set(relay_index, False)
        self.relays.clear_timer(relay_index)

    def is_any_relay_active(self) -> bool:
        """Return True when any relay is on."""
        return self.relays.any_active()

    def schedule_relay(self, relay_index: int, seconds: int, delay_ms: int = 0) -> bool:
        """Flip a relay for ``seconds``; the delay is not applied."""
        return self.toggle_relay(relay_index, seconds * 1000)

    # ----- dosing queue ----------------------------------------------------

    def clear_dosage_queue(self) -> None:
        """Drop nutrients queued while no sequence is running."""
        if not self.sequence.is_active():
            self.sequence.nutrients = []

    def add_to_dosage_queue(
        self, nutrient_name: str, relay_index: int, dosage_ml: float, duration_ms: int
    ) -> bool:
        """Append a pump run to the sequence list; return False when it is full."""
        if len(self.sequence.nutrients) >= MAX_NUTRIENTS:
            return False
        self.sequence.nutrients.append(Nutrient(nutrient_name, relay_index, dosage_ml, duration_ms))
        logger.info("Queued %s", nutrient_name)
        return True

    def process_sequential_dosage(self) -> None:
        """Advance the dosing sequence to the current time."""
        self.sequence.process(self._now_ms())

    def dosage_progress(self) -> tuple[int, int] | None:
        """Return ``(position, total)`` of the running sequence, or None when idle."""
        return self.sequence.progress()

    def _start(self, nutrients: Sequence[Nutrient], interval_seconds: int) -> bool:
        return self.sequence.start(nutrients, interval_seconds, self._now_ms())

    def start_simple_sequential_dosage(self, total_ml: float, ec_setpoint: float, ec_actual: float) -> bool:
        """Dose ``total_ml`` split by the built-in proportions."""
        if self.sequence.is_active():
            logger.warning("Dosing already active - ignoring new dosage")
            return False
        plan = build_proportional_plan(total_ml, default_proportions(), self.ec_controller.flow_rate)
        return self._start(plan, self.auto_ec_interval_seconds)

    def execute_web_dosage(self, distribution: Iterable[Mapping[str, object]], interval: int) -> bool:
        """Dose the list sent by the web interface with ``interval`` seconds between pumps."""
        if self.sequence.is_active():
            logger.warning("Dosing already active - ignoring new web dosage")
            return False
        return self._start(parse_web_distribution(distribution), interval)

    # ----- proportions -----------------------------------------------------

    def set_nutrient_proportions(
        self,
        grow_ratio: str | float,
        micro_ratio: str | float,
        bloom_ratio: str | float,
        calmag_ratio: str | float,
    ) -> None:
        """Set the Grow/Micro/Bloom/CalMag split used by automatic dosing."""
        ratios = [float(r) for r in (grow_ratio, micro_ratio, bloom_ratio, calmag_ratio)]
        self.proportions = [
            NutrientProportion(base.name, base.relay, ratio, True)
            for base, ratio in zip(default_proportions(), ratios)
        ]
        logger.info(
            "Proportions: Grow %.1f%%, Micro %.1f%%, Bloom %.1f%%, CalMag %.1f%%",
            *(r * 100 for r in ratios),
        )

    def update_proportions_from_web(self, proportions: Iterable[Mapping[str, object]]) -> None:
        """Replace the proportions with those sent by the web interface."""
        self.proportions = parse_web_proportions(proportions)
        logger.info("%d proportions received from the web", len(self.proportions))

    def start_dynamic_sequential_dosage(self, total_ml: float, ec_setpoint: float, ec_actual: float) -> bool:
        """Dose ``total_ml`` split by the configured proportions."""
        if self.sequence.is_active():
            logger.warning("Dosing already active - ignoring new dynamic dosage")
            return False
        plan = build_proportional_plan(total_ml, self.proportions, self.ec_controller.flow_rate)
        return self._start(plan, self.auto_ec_interval_seconds)

    # ----- emergency -------------------------------------------------------

    def cancel_current_dosage(self) -> bool:
        """Cancel the running sequence; return whether one was running."""
        return self.sequence.cancel()

    def emergency_stop_all_relays(self) -> None:
        """Switch every relay off at once."""
        self.relays.all_off()

    def emergency_system_reset(self) -> None:
        """Stop everything and return the controller to a safe idle state."""
        logger.warning("Emergency reset")
        self.emergency_stop_all_relays()
        self.sequence.reset()
        self.auto_ec_enabled = False
        self._last_ec_check = 0.0
        self.auto_ec_interval_seconds = 0
        self.proportions = []
        self.ec_setpoint = 0.0
        for message in ("EMERGENCIA!", "Sistema Resetado", "IDLE - Seguro"):
            self.show_message(message)

    def is_dosage_active(self) -> bool:
        """Return True while a dosing sequence runs."""
        return self.sequence.is_active()