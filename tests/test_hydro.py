import pytest

from hydrodose.dosing import SequentialState, default_proportions
from hydrodose.hydro import HydroControl
from hydrodose.ph import PHSensor


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance_ms(self, ms):
        self.now += ms / 1000.0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def writes():
    return []


@pytest.fixture
def hydro(clock, writes):
    h = HydroControl(relay_writer=lambda e, p, level: writes.append((e, p, level)), clock=clock)
    h.ec_controller.set_parameters(1525.0, 1.0, 100.0, 4.1)
    return h


def run_until_idle(hydro, clock, step_ms=50, limit=100_000):
    for _ in range(limit):
        if not hydro.is_dosage_active():
            return
        clock.advance_ms(step_ms)
        hydro.process_sequential_dosage()
    raise AssertionError("sequence did not finish")


def test_toggle_relay_is_active_low(hydro, writes):
    assert hydro.toggle_relay(2) is True
    assert hydro.relay_states[2] is True
    assert writes[-1] == (0, 2, False)
    assert hydro.toggle_relay(2) is False
    assert writes[-1] == (0, 2, True)


def test_last_relay_uses_second_expander(hydro, writes):
    assert hydro.toggle_relay(7) is True
    assert hydro.relay_states[7] is True
    assert writes[-1] == (1, 1, False)


def test_toggle_out_of_range_raises(hydro):
    with pytest.raises(ValueError):
        hydro.toggle_relay(8)


def test_schedule_relay_records_timer(hydro):
    hydro.schedule_relay(4, 3, 0)
    assert hydro.relay_states[4] is True
    assert hydro.relays.timer_seconds[4] == 3


def test_deactivate_relay(hydro):
    hydro.activate_relay(1, 2000)
    assert hydro.is_any_relay_active()
    hydro.deactivate_relay(1)
    assert not hydro.is_any_relay_active()
    assert hydro.relays.timer_seconds[1] == 0


def test_simple_dosage_splits_total(hydro):
    assert hydro.start_simple_sequential_dosage(10.0, 1500.0, 1000.0) is True
    assert hydro.is_dosage_active()
    assert hydro.dosage_progress() == (1, 4)
    total = sum(n.dosage_ml for n in hydro.sequence.nutrients)
    assert total == pytest.approx(10.0)
    assert hydro.relay_states[default_proportions()[0].relay] is True


def test_simple_dosage_runs_to_completion(hydro, clock):
    hydro.start_simple_sequential_dosage(2.0, 1500.0, 1000.0)
    run_until_idle(hydro, clock)
    assert not hydro.is_any_relay_active()
    assert hydro.screen == ("Sequencia OK!",)
    assert hydro.dosage_progress() is None


def test_second_start_is_ignored(hydro):
    assert hydro.start_simple_sequential_dosage(2.0, 0, 0)
    plan = list(hydro.sequence.nutrients)
    assert hydro.start_dynamic_sequential_dosage(5.0, 0, 0) is False
    assert hydro.execute_web_dosage([{"name": "A", "relay": 1, "duration": 1}], 0) is False
    assert hydro.sequence.nutrients == plan


def test_zero_flow_rate_raises(clock):
    h = HydroControl(clock=clock)
    with pytest.raises(ValueError):
        h.start_simple_sequential_dosage(5.0, 0, 0)


def test_web_dosage_waits_between_nutrients(hydro, clock):
    distribution = [
        {"name": "A", "relay": 3, "dosage": 1.0, "duration": 0.5},
        {"name": "B", "relay": 4, "dosage": 1.0, "duration": 0.5},
    ]
    assert hydro.execute_web_dosage(distribution, 2) is True
    assert hydro.relay_states[2] is True
    clock.advance_ms(500)
    hydro.process_sequential_dosage()
    assert hydro.sequence.state is SequentialState.WAITING
    assert not hydro.is_any_relay_active()
    clock.advance_ms(1999)
    hydro.process_sequential_dosage()
    assert hydro.relay_states[3] is False
    clock.advance_ms(1)
    hydro.process_sequential_dosage()
    assert hydro.relay_states[3] is True
    assert hydro.dosage_progress() == (2, 2)


def test_web_dosage_with_nothing_does_not_start(hydro):
    assert hydro.execute_web_dosage([], 1) is False
    assert not hydro.is_dosage_active()


def test_add_to_queue_extends_running_sequence(hydro):
    hydro.execute_web_dosage([{"name": "A", "relay": 1, "duration": 1}], 0)
    assert hydro.add_to_dosage_queue("B", 5, 1.0, 500) is True
    assert hydro.dosage_progress() == (1, 2)


def test_clear_queue_drops_idle_entries(hydro):
    hydro.add_to_dosage_queue("B", 5, 1.0, 500)
    hydro.clear_dosage_queue()
    assert hydro.sequence.nutrients == []


def test_cancel_switches_pump_off(hydro):
    hydro.execute_web_dosage([{"name": "A", "relay": 2, "duration": 5}], 0)
    assert hydro.cancel_current_dosage() is True
    assert not hydro.is_dosage_active()
    assert not hydro.is_any_relay_active()
    assert hydro.cancel_current_dosage() is False


def test_emergency_reset(hydro):
    hydro.auto_ec_enabled = True
    hydro.ec_setpoint = 1500.0
    hydro.auto_ec_interval_seconds = 5
    hydro.toggle_relay(6)
    hydro.start_simple_sequential_dosage(3.0, 0, 0)
    hydro.emergency_system_reset()
    assert hydro.auto_ec_enabled is False
    assert hydro.ec_setpoint == 0.0
    assert hydro.auto_ec_interval_seconds == 0
    assert hydro.proportions == []
    assert hydro.relay_states == (False,) * 8
    assert not hydro.is_dosage_active()
    assert hydro.screen == ("IDLE - Seguro",)


def test_set_nutrient_proportions_from_strings(hydro):
    hydro.set_nutrient_proportions("0.4", "0.3", "0.2", "0.1")
    assert [p.name for p in hydro.proportions] == ["Grow", "Micro", "Bloom", "CalMag"]
    assert [p.ratio for p in hydro.proportions] == [0.4, 0.3, 0.2, 0.1]
    assert [p.relay for p in hydro.proportions] == [2, 3, 4, 5]


def test_update_proportions_from_web(hydro):
    hydro.update_proportions_from_web([{"name": "X", "relay": 1, "ratio": 1.0}])
    assert len(hydro.proportions) == 1
    assert hydro.proportions[0].relay == 0
    hydro.start_dynamic_sequential_dosage(2.0, 0, 0)
    assert hydro.relay_states[0] is True


def test_auto_ec_waits_for_check_interval(hydro, clock):
    hydro.auto_ec_enabled = True
    hydro.ec_setpoint = 1500.0
    hydro.ec = 1000.0
    clock.advance_ms(29_999)
    assert hydro.check_auto_ec() is False
    clock.advance_ms(1)
    assert hydro.check_auto_ec() is True
    assert hydro.is_dosage_active()
    assert hydro.screen == ("Auto EC: Seq. Ativada",)


def test_auto_ec_within_tolerance_does_nothing(hydro, clock):
    hydro.auto_ec_enabled = True
    hydro.ec_setpoint = 1000.0
    hydro.ec = 990.0
    clock.advance_ms(30_000)
    assert hydro.check_auto_ec() is False
    assert not hydro.is_dosage_active()


def test_auto_ec_disabled(hydro, clock):
    hydro.ec_setpoint = 1500.0
    clock.advance_ms(60_000)
    assert hydro.check_auto_ec() is False


def test_update_sensors_rejects_bad_temperature(clock):
    readings = iter([22.5, -127.0, 80.0])
    h = HydroControl(read_temperature=lambda: next(readings), clock=clock)
    h.update_sensors()
    assert h.temperature == 22.5
    h.update_sensors()
    h.update_sensors()
    assert h.temperature == 22.5


def test_update_sensors_reads_ph(clock):
    sensor = PHSensor(sample_delay=0)
    sensor.calibrate(2.56, 3.3)
    h = HydroControl(ph_sensor=sensor, ph_analog=lambda: 2000, clock=clock)
    h.update_sensors()
    assert h.ph == pytest.approx(sensor.read_ph(lambda: 2000))


def test_display_lines(hydro):
    hydro.temperature = 25.0
    top, bottom = hydro.display_lines()
    assert len(top) == 16 and len(bottom) == 16
    assert "Temp:25.0°C" in top
    assert bottom.startswith("pH:7.00")
    assert bottom.endswith("EC:0")


def test_update_sends_telemetry_and_refreshes_display(clock):
    sent = []
    shown = []
    h = HydroControl(
        telemetry=lambda t, p, e: sent.append((t, p, e)),
        display=shown.append,
        clock=clock,
    )
    h.update()
    assert sent == []
    clock.advance_ms(30_000)
    h.update()
    assert sent == [(0.0, 7.0, 0.0)]
    assert shown[-1] == h.display_lines()


def test_update_finishes_sequence(hydro, clock):
    hydro.execute_web_dosage([{"name": "A", "relay": 1, "duration": 0.2}], 0)
    clock.advance_ms(200)
    hydro.update()
    assert not hydro.is_dosage_active()
    assert hydro.relay_states[0] is False