# hydrodose

A controller for hydroponic nutrient dosing. It keeps the electrical
conductivity (EC) of a reservoir near a setpoint by computing a nutrient
dose with a proportional control law. It splits that dose between several
nutrient pumps and runs the pumps one after another through a bank of eight
relays. It also holds the maths for pH and TDS probes and serves a small
Flask web interface for monitoring and control.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Dose calculation

`hydrodose.controller.ECController` is a dataclass with the fields
`base_dose`, `flow_rate`, `volume`, `total_ml` and `kp` (default 1.0). It
computes

    u = (V / (k * q)) * e * Kp,    k = base_dose / total_ml

Here `V` is the reservoir volume in litres, `q` the pump flow rate in ml/s
and `e` the EC error in µS/cm. `calculate_k` returns 1.0 when `total_ml` is
not positive. The dose is 0 when `k` or the flow rate is not positive.
Negative doses are clamped to zero, so the controller only ever adds
nutrients.

```python
from hydrodose.controller import ECController

ec = ECController()
ec.set_parameters(1525.0, 0.974, 100.0, 4.1)

if ec.needs_adjustment(1500.0, 1400.0):      # tolerance defaults to 50 µS/cm
    ml = ec.calculate_dosage(1500.0, 1400.0)
    seconds = ec.calculate_dosage_time(ml)
```

## Sensors

- `hydrodose.ph`
  - `trimmed_voltage(samples)` takes exactly ten raw ADC samples (12-bit,
    3.3 V). It averages the central six after sorting and returns that
    value as a voltage. Any other number of samples raises `ValueError`.
  - `PHSensor.calibrate(cal_ph7, cal_ph4, cal_ph10=0.0, use_ph10=False)`
    fits a line through the pH 7 point and either the pH 4 point or the
    pH 10 point. It raises `ValueError` when the two voltages are equal.
  - `calculate_ph(voltage)` applies that line. It raises `RuntimeError`
    when the sensor has not been calibrated.
  - `read_ph(read_analog)` calls `read_analog()` ten times, with a 10 ms
    pause between calls by default, and returns the pH.
  - `format_ph(read_analog)` returns the reading as a line of the form
    `"pH = 6.85"`.
- `hydrodose.tds`
  - `median(values)` returns the median of the values.
  - `compute_tds(voltage, temperature, calibration_factor)` applies
    temperature compensation, referenced to 25 °C, and the probe's cubic
    curve.
  - `TDSReader(read_analog, vref, calibration_factor, clock=time.monotonic)`
    stores an ADC sample at most every 40 ms in a window of 30 samples. It
    recomputes TDS at most every 800 ms from the median of that window.
    Readings outside 0–1000 ppm are reported as 0. `tds_value` is in ppm
    and `ec_value` is twice the TDS, in µS/cm.

## Sequential dosing

`hydrodose.dosing` holds the relay bank and the dosing state machine.

- `RelayBank` models eight active-low relays on two port expanders. The
  optional `writer(expander, pin, level)` callable receives every change.
  `relay_pin(relay)` gives the expander and pin for relay indices 0–7.
  `set`, `toggle`, `all_off`, `any_active` and `states` operate on it.
- `DosingSequence` switches one relay on for the duration of a `Nutrient`,
  then switches it off. It waits `interval_seconds`, moves to the next
  nutrient, and returns to `SequentialState.IDLE` when all are done.
  Times passed to `start(nutrients, interval_seconds, now)` and
  `process(now)` are in milliseconds. `cancel`, `reset`, `is_active` and
  `progress` are also available. At most six nutrients run in one sequence.
- `build_proportional_plan(total_ml, proportions, flow_rate)` splits a
  volume between the active `NutrientProportion` entries. It skips shares
  of 0.001 ml or less and raises `ValueError` for a flow rate that is not
  positive. `default_proportions()` is Grow 35 % (relay 3), Micro 35 %
  (relay 4), Bloom 25 % (relay 5) and CalMag 5 % (relay 6).
- `parse_web_distribution` and `parse_web_proportions` read the lists the
  web interface sends. In those lists relays are numbered 1–8 and durations
  are in seconds.
- Pump runs produced by `build_proportional_plan` and
  `parse_web_distribution` last at least 100 ms.

`hydrodose.hydro.HydroControl` ties the sensors, the EC controller, the
relay bank and the sequence together. Hardware is passed in as keyword
arguments:

- `relay_writer`
- `read_temperature`
- `ph_sensor` and/or `ph_analog`
- `tds_reader`
- `display(lines)`
- `telemetry(temp, ph, ec)`
- `clock`, returning seconds

Call its `update()` method in a loop. On each call it:

- reads the sensors every 500 ms, keeping only plausible values;
- refreshes the two 16-character display lines (`display_lines()`);
- checks automatic EC control every 30 s when `auto_ec_enabled` is set;
- advances any running sequence;
- calls `telemetry` every 30 s.

Automatic EC control only starts a dose above 0.1 ml. It splits that dose
by the configured `proportions`.

Emergency handling is available through `cancel_current_dosage`,
`emergency_stop_all_relays` and `emergency_system_reset`. The reset
switches all relays off, disables auto EC and clears the setpoint, the
interval and the proportions.

## Web interface

Start the server with:

```
hydrodose-server --host 0.0.0.0 --port 8080 --static-dir data
```

The options are:

- `--host`, default `0.0.0.0`
- `--port`, default 80
- `--static-dir`, default `data`
- `--period`, the control-loop period in seconds, default 0.05

The command runs `HydroControl.update()` in a background thread and serves:

| Route | Method | Purpose |
|---|---|---|
| `/`, `/style.css`, `/script.js` | GET | `index.html`, `style.css`, `script.js` from the static directory |
| `/sensors` | GET | temperature, pH, TDS, EC, RSSI and relay states |
| `/toggle1` … `/toggle8` | GET | toggle one relay, optional `seconds` query parameter |
| `/relay` | POST | toggle relay 1–8, optionally for a duration in ms (400 for an invalid relay) |
| `/ec-config` | POST | set controller parameters and the auto-EC interval |
| `/ec-control` | POST | set the EC setpoint and enable or disable auto EC |
| `/ec-status` | GET | current setpoint and controller parameters |
| `/ec-calculate` | POST | set parameters and return the computed dose |
| `/calibrar` | POST | log a pump calibration rate |
| `/nutrient-proportions` | POST | set the Grow/Micro/Bloom/CalMag split |
| `/cancel-auto-ec` | POST | disable auto EC, cancel dosing, stop all relays |
| `/emergency-reset` | POST | stop everything and reset all state |

Non-numeric values in a request body are answered with status 400. You can
also build the application in code with
`hydrodose.webserver.create_app(hydro, static_dir)`. The payload builders
`sensors_payload`, `ec_status_payload` and `ec_calculate_payload` can be
used on their own. The RSSI in `/sensors` comes from a callable stored in
`app.config["RSSI_PROVIDER"]` and is 0 when none is set.

## What the package does not do

- It has no drivers for probes, relay expanders, displays, Wi-Fi or a
  telemetry service. These are only reached through the callables given to
  `HydroControl`. `hydrodose-server` builds a `HydroControl` with none of
  them attached. Its readings stay at their initial values (pH 7.0, other
  readings 0), and relay changes exist only in memory.
- It ships no web pages. `index.html`, `style.css` and `script.js` must be
  placed in the static directory; otherwise those routes return 404.
- A relay toggled with a duration records a timer (`start_times`,
  `timer_seconds`), but nothing switches it off when the time is up. Only a
  `DosingSequence` switches pumps off by itself.
- `/calibrar` only logs the rate it receives. It does not change the
  controller.