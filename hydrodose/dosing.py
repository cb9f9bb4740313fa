"""Relay bank and the sequential, one-pump-at-a-time nutrient dosing machine."""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

NUM_RELAYS = 8
MAX_NUTRIENTS = 6
MIN_DURATION_MS = 100
MIN_DOSAGE_ML = 0.001
FIRST_EXPANDER_PINS = 7

RelayWriter = Callable[[int, int, bool], None]
MessageSink = Callable[[str], None]


class SequentialState(enum.Enum):
    """State of the dosing sequence."""

    IDLE = "IDLE"
    DOSING = "DOSING"
    WAITING = "WAITING"


@dataclass(frozen=True)
class Nutrient:
    """One pump run: which relay, how many millilitres and for how long."""

    name: str
    relay: int
    dosage_ml: float
    duration_ms: int


@dataclass(frozen=True)
class NutrientProportion:
    """Share of a total dose that goes to one nutrient pump."""

    name: str
    relay: int
    ratio: float
    active: bool = True


def _check_relay(relay: int) -> int:
    if not 0 <= relay < NUM_RELAYS:
        raise ValueError(f"relay index must be between 0 and {NUM_RELAYS - 1}, got {relay}")
    return relay


def relay_pin(relay: int) -> tuple[int, int]:
    """Return ``(expander, pin)`` driving a relay index (0-7)."""
    _check_relay(relay)
    if relay < FIRST_EXPANDER_PINS:
        return 0, relay
    return 1, relay - (FIRST_EXPANDER_PINS - 1)


def default_proportions() -> list[NutrientProportion]:
    """Return the built-in Grow/Micro/Bloom/CalMag split."""
    return [
        NutrientProportion("Grow", 2, 0.35),
        NutrientProportion("Micro", 3, 0.35),
        NutrientProportion("Bloom", 4, 0.25),
        NutrientProportion("CalMag", 5, 0.05),
    ]


def _duration_ms(seconds: float) -> int:
    return max(int(seconds * 1000), MIN_DURATION_MS)


def build_proportional_plan(
    total_ml: float, proportions: Iterable[NutrientProportion], flow_rate: float
) -> list[Nutrient]:
    """Split ``total_ml`` over the active proportions into timed pump runs."""
    if flow_rate <= 0:
        raise ValueError("flow rate must be positive")
    plan: list[Nutrient] = []
    for proportion in proportions:
        if not proportion.active:
            continue
        dosage = total_ml * proportion.ratio
        duration = _duration_ms(dosage / flow_rate)
        if dosage > MIN_DOSAGE_ML:
            plan.append(Nutrient(proportion.name, proportion.relay, dosage, duration))
            logger.info(
                "%s: %.3fml (%.1f%%) -> %dms -> relay %d",
                proportion.name, dosage, proportion.ratio * 100, duration, proportion.relay + 1,
            )
            if len(plan) >= MAX_NUTRIENTS:
                break
    return plan


def _web_relay(item: Mapping[str, object]) -> int:
    try:
        number = int(item["relay"])  # type: ignore[arg-type]
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"invalid relay in {dict(item)!r}") from exc
    return _check_relay(number - 1)


def parse_web_distribution(distribution: Iterable[Mapping[str, object]]) -> list[Nutrient]:
    """Turn the web interface's dosing list (relays 1-8, seconds) into pump runs."""
    nutrients: list[Nutrient] = []
    for item in distribution:
        relay = _web_relay(item)
        dosage = float(item.get("dosage", 0.0))  # type: ignore[arg-type]
        duration = _duration_ms(float(item.get("duration", 0.0)))  # type: ignore[arg-type]
        name = str(item.get("name", ""))
        logger.info("Web: %s -> %.3fml -> %dms -> relay %d", name, dosage, duration, relay + 1)
        nutrients.append(Nutrient(name, relay, dosage, duration))
        if len(nutrients) >= MAX_NUTRIENTS:
            break
    return nutrients


def parse_web_proportions(proportions: Iterable[Mapping[str, object]]) -> list[NutrientProportion]:
    """Turn the web interface's proportion list (relays 1-8) into proportions."""
    result: list[NutrientProportion] = []
    for item in proportions:
        if len(result) >= MAX_NUTRIENTS:
            break
        relay = _web_relay(item)
        ratio = float(item.get("ratio", 0.0))  # type: ignore[arg-type]
        result.append(NutrientProportion(str(item.get("name", "")), relay, ratio, True))
    return result


class RelayBank:
    """Eight active-low relays spread over two port expanders."""

    def __init__(self, writer: RelayWriter | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._writer = writer
        self._clock = clock
        self._states = [False] * NUM_RELAYS
        self.start_times = [0.0] * NUM_RELAYS
        self.timer_seconds = [0] * NUM_RELAYS

    def _write(self, relay: int) -> None:
        expander, pin = relay_pin(relay)
        if self._writer is not None:
            self._writer(expander, pin, not self._states[relay])

    def set(self, relay: int, on: bool) -> None:
        """Switch a relay on or off."""
        _check_relay(relay)
        self._states[relay] = on
        self._write(relay)

    def toggle(self, relay: int, duration_ms: int = 0) -> bool:
        """Flip a relay, recording a timer when switched on with a duration; return the new state."""
        _check_relay(relay)
        self._states[relay] = not self._states[relay]
        self._write(relay)
        if duration_ms > 0 and self._states[relay]:
            self.start_times[relay] = self._clock()
            self.timer_seconds[relay] = duration_ms // 1000
            logger.info("Relay %d on for %d seconds", relay + 1, self.timer_seconds[relay])
        else:
            self.start_times[relay] = 0.0
            self.timer_seconds[relay] = 0
        return self._states[relay]

    def clear_timer(self, relay: int) -> None:
        """Forget any timer recorded for a relay."""
        _check_relay(relay)
        self.start_times[relay] = 0.0
        self.timer_seconds[relay] = 0

    def all_off(self) -> None:
        """Switch every relay off and clear all timers."""
        for relay in range(NUM_RELAYS):
            self._states[relay] = False
            self.clear_timer(relay)
            self._write(relay)
        logger.warning("All %d relays switched off", NUM_RELAYS)

    def any_active(self) -> bool:
        """Return True when any relay is on."""
        return any(self._states)

    def states(self) -> tuple[bool, ...]:
        """Return the on/off state of every relay."""
        return tuple(self._states)


class DosingSequence:
    """Runs pumps one after another with a pause between them.

    Times passed to :meth:`start` and :meth:`process` are in milliseconds.
    """

    def __init__(self, relays: RelayBank, on_message: MessageSink | None = None) -> None:
        self.relays = relays
        self._on_message = on_message
        self.state = SequentialState.IDLE
        self.nutrients: list[Nutrient] = []
        self.current_index = 0
        self.state_start = 0.0
        self.interval_seconds = 0

    def _message(self, text: str) -> None:
        if self._on_message is not None:
            self._on_message(text)

    def _begin(self, nutrient: Nutrient, now: float) -> None:
        logger.info(
            "Starting %s - %.3fml for %.3fs - relay %d",
            nutrient.name, nutrient.dosage_ml, nutrient.duration_ms / 1000.0, nutrient.relay + 1,
        )
        self.relays.set(nutrient.relay, True)
        self.state = SequentialState.DOSING
        self.state_start = now
        self._message(f"{nutrient.name}: {nutrient.dosage_ml:.2f}ml")

    @property
    def current(self) -> Nutrient | None:
        """The nutrient being dosed or waited for, if any."""
        if self.state is SequentialState.IDLE:
            return None
        return self.nutrients[self.current_index]

    def start(self, nutrients: Sequence[Nutrient], interval_seconds: int, now: float) -> bool:
        """Start dosing; return False when already running or there is nothing to dose."""
        if self.state is not SequentialState.IDLE:
            logger.warning("Dosing already active - ignoring new request")
            return False
        plan = list(nutrients)[:MAX_NUTRIENTS]
        self.interval_seconds = interval_seconds
        if not plan:
            logger.info("No significant dosage to run")
            self.nutrients = []
            return False
        self.nutrients = plan
        self.current_index = 0
        self._begin(plan[0], now)
        logger.info("Sequence started: %d nutrients, interval %ds", len(plan), interval_seconds)
        return True

    def process(self, now: float) -> SequentialState:
        """Advance the sequence to time ``now`` and return the resulting state."""
        if self.state is SequentialState.DOSING:
            current = self.nutrients[self.current_index]
            if now - self.state_start >= current.duration_ms:
                self.relays.set(current.relay, False)
                logger.info("Relay %d off after %.3fs", current.relay + 1, current.duration_ms / 1000.0)
                self.current_index += 1
                if self.current_index >= len(self.nutrients):
                    logger.info("Sequence complete")
                    self.state = SequentialState.IDLE
                    self.nutrients = []
                    self.current_index = 0
                    self._message("Sequencia OK!")
                else:
                    self.state = SequentialState.WAITING
                    self.state_start = now
                    logger.info("Waiting %ds before the next nutrient", self.interval_seconds)
                    self._message("Aguardando...")
        elif self.state is SequentialState.WAITING:
            if now - self.state_start >= self.interval_seconds * 1000:
                self._begin(self.nutrients[self.current_index], now)
        return self.state

    def cancel(self) -> bool:
        """Stop a running sequence, switching off the active pump; return whether one ran."""
        if self.state is SequentialState.IDLE:
            logger.info("No active dosage to cancel")
            return False
        if self.state is SequentialState.DOSING:
            current = self.nutrients[self.current_index]
            self.relays.set(current.relay, False)
            logger.info("Relay %d cancelled (was %s)", current.relay + 1, current.name)
        self.state = SequentialState.IDLE
        self.nutrients = []
        self.current_index = 0
        self.state_start = 0.0
        return True

    def reset(self) -> None:
        """Return to the initial idle state without touching the relays."""
        self.state = SequentialState.IDLE
        self.nutrients = []
        self.current_index = 0
        self.state_start = 0.0
        self.interval_seconds = 0

    def is_active(self) -> bool:
        """Return True while a sequence is running."""
        return self.state is not SequentialState.IDLE

    def progress(self) -> tuple[int, int] | None:
        """Return ``(position, total)`` of the running sequence, or None when idle."""
        if self.state is SequentialState.IDLE:
            return None
        return self.current_index + 1, len(self.nutrients)