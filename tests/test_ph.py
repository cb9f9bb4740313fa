import itertools

import pytest

from hydrodose.ph import PHSensor, trimmed_voltage


def constant(value):
    return lambda: value


def test_trimmed_voltage_full_scale():
    assert trimmed_voltage([4095] * 10) == pytest.approx(3.3)


def test_trimmed_voltage_ignores_outliers():
    base = [2000] * 10
    noisy = [0, 0, 2000, 2000, 2000, 2000, 2000, 2000, 4095, 4095]
    assert trimmed_voltage(noisy) == pytest.approx(trimmed_voltage(base))


def test_trimmed_voltage_order_independent():
    samples = [10, 400, 3000, 25, 1800, 900, 77, 2500, 1200, 60]
    assert trimmed_voltage(samples) == pytest.approx(trimmed_voltage(sorted(samples, reverse=True)))


@pytest.mark.parametrize("count", [0, 9, 11])
def test_trimmed_voltage_requires_ten_samples(count):
    with pytest.raises(ValueError):
        trimmed_voltage([100] * count)


def test_calibration_points_map_to_buffers():
    sensor = PHSensor(sample_delay=0)
    sensor.calibrate(2.56, 3.3)
    assert sensor.calculate_ph(2.56) == pytest.approx(7.0)
    assert sensor.calculate_ph(3.3) == pytest.approx(4.0)


def test_calibration_with_ph10():
    sensor = PHSensor(sample_delay=0)
    sensor.calibrate(2.56, 3.3, 2.05, True)
    assert sensor.use_ph10 is True
    assert sensor.calculate_ph(2.56) == pytest.approx(7.0)
    assert sensor.calculate_ph(2.05) == pytest.approx(10.0)


def test_equal_calibration_voltages_rejected():
    sensor = PHSensor(sample_delay=0)
    with pytest.raises(ValueError):
        sensor.calibrate(2.5, 2.5)
    with pytest.raises(ValueError):
        sensor.calibrate(2.5, 3.0, 2.5, True)


def test_uncalibrated_sensor_raises():
    sensor = PHSensor(sample_delay=0)
    assert sensor.calibrated is False
    with pytest.raises(RuntimeError):
        sensor.calculate_ph(1.0)


def test_read_ph_uses_ten_samples():
    sensor = PHSensor(sample_delay=0)
    sensor.calibrate(2.56, 3.3)
    counter = itertools.count()
    samples = [100 * i for i in range(10)]
    reader = lambda: samples[next(counter)]
    value = sensor.read_ph(reader)
    assert next(counter) == 10
    assert value == pytest.approx(sensor.calculate_ph(trimmed_voltage(samples)))


def test_format_ph():
    sensor = PHSensor(sample_delay=0)
    sensor.calibrate(3.3, 2.0)
    assert sensor.format_ph(constant(4095)) == "pH = 7.00"