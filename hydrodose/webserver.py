"""HTTP interface for reading the probes and driving the dosing controller."""

from __future__ import annotations

import argparse
import logging
import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from flask import Flask, Response, abort, jsonify, request, send_from_directory

from hydrodose.dosing import NUM_RELAYS
from hydrodose.hydro import HydroControl

logger = logging.getLogger(__name__)

LOCK_KEY = "hydrodose_lock"
RSSI_PROVIDER_KEY = "RSSI_PROVIDER"
DEFAULT_PORT = 80
DEFAULT_STATIC_DIR = "data"

_STATIC_FILES = {
    "/": ("index.html", "text/html"),
    "/style.css": ("style.css", "text/css"),
    "/script.js": ("script.js", "text/javascript"),
}


def sensors_payload(hydro: HydroControl, rssi: int) -> dict[str, Any]:
    """Return the current readings and relay states for ``/sensors``."""
    return {
        "temperature": round(hydro.temperature, 1),
        "ph": round(hydro.ph, 2),
        "tds": round(hydro.tds, 0),
        "ec": round(hydro.tds * 2, 0),
        "rssi": rssi,
        "relayStates": list(hydro.relay_states),
    }


def ec_status_payload(hydro: HydroControl) -> dict[str, Any]:
    """Return the EC control settings for ``/ec-status``."""
    controller = hydro.ec_controller
    return {
        "setpoint": round(hydro.ec_setpoint, 0),
        "autoEnabled": hydro.auto_ec_enabled,
        "baseDose": round(controller.base_dose, 1),
        "flowRate": round(controller.flow_rate, 3),
        "volume": round(controller.volume, 1),
        "totalMl": round(controller.total_ml, 1),
    }


def _number(doc: Mapping[str, Any], key: str, kind: Callable[[Any], Any] = float) -> Any:
    value = doc.get(key)
    if value is None:
        return kind(0)
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be a number, got {value!r}") from exc


def _flag(doc: Mapping[str, Any], key: str) -> bool:
    value = doc.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return False


def ec_calculate_payload(hydro: HydroControl, params: Mapping[str, Any]) -> dict[str, Any]:
    """Configure the EC controller from ``params`` and return the dosage it computes."""
    base_dose = _number(params, "baseDose")
    flow_rate = _number(params, "flowRate")
    volume = _number(params, "volume")
    total_ml = _number(params, "totalMlPorLitro")
    ec_setpoint = _number(params, "ecSetpoint")

    controller = hydro.ec_controller
    controller.set_parameters(base_dose, flow_rate, volume, total_ml)
    ec_actual = hydro.ec
    error = ec_setpoint - ec_actual
    ut_result = controller.calculate_dosage(ec_setpoint, ec_actual)
    dosage_time = controller.calculate_dosage_time(ut_result)
    k = base_dose / total_ml if total_ml > 0 else 0.0

    logger.info(
        "EC calculation: V=%.1fL k=%.3f EC=%.1f setpoint=%.1f error=%.1f u(t)=%.3fml time=%.3fs",
        volume, k, ec_actual, ec_setpoint, error, ut_result, dosage_time,
    )
    return {
        "utResult": round(ut_result, 3),
        "dosageTime": round(dosage_time, 2),
        "error": round(error, 1),
        "k": round(k, 3),
        "ecAtual": round(ec_actual, 1),
        "ecSetpoint": round(ec_setpoint, 1),
        "baseDose": round(base_dose, 1),
        "flowRate": round(flow_rate, 3),
        "volume": round(volume, 1),
        "totalMlPorLitro": round(total_ml, 1),
    }


def _json_body() -> dict[str, Any]:
    doc = request.get_json(silent=True, force=True)
    return doc if isinstance(doc, dict) else {}


def create_app(hydro: HydroControl, static_dir: str | Path | None = None) -> Flask:
    """Build the Flask application serving the web interface for ``hydro``."""
    app = Flask(__name__)
    lock = threading.RLock()
    app.extensions[LOCK_KEY] = lock
    app.config.setdefault(RSSI_PROVIDER_KEY, None)
    static_root = Path(static_dir).resolve() if static_dir is not None else None

    @app.errorhandler(ValueError)
    def _bad_value(exc: ValueError) -> tuple[str, int]:
        return str(exc), 400

    def _static_view(filename: str, mimetype: str) -> Callable[[], Response]:
        def view() -> Response:
            if static_root is None:
                abort(404)
            return send_from_directory(static_root, filename, mimetype=mimetype)

        return view

    for path, (filename, mimetype) in _STATIC_FILES.items():
        app.add_url_rule(
            path, endpoint=f"static_{filename}", view_func=_static_view(filename, mimetype), methods=["GET"]
        )

    @app.get("/sensors")
    def sensors() -> Response:
        provider = app.config.get(RSSI_PROVIDER_KEY)
        rssi = int(provider()) if provider is not None else 0
        with lock:
            return jsonify(sensors_payload(hydro, rssi))

    def _toggle_view(relay: int) -> Callable[[], str]:
        def view() -> str:
            seconds = request.args.get("seconds", default=0, type=int) or 0
            with lock:
                hydro.toggle_relay(relay, seconds * 1000)
            return "OK"

        return view

    for relay in range(NUM_RELAYS):
        app.add_url_rule(
            f"/toggle{relay + 1}", endpoint=f"toggle{relay + 1}", view_func=_toggle_view(relay), methods=["GET"]
        )

    @app.post("/relay")
    def relay_command() -> tuple[str, int] | str:
        doc = _json_body()
        relay = _number(doc, "relay", int)
        state = _number(doc, "state", int)
        duration = _number(doc, "duration", int)
        logger.info("Relay command: relay %d, state %d, duration %dms", relay, state, duration)
        if not 1 <= relay <= NUM_RELAYS:
            logger.error("Invalid relay: %d", relay)
            return f"invalid relay {relay}", 400
        with lock:
            if duration > 0:
                seconds = max(duration // 1000, 1)
                hydro.toggle_relay(relay - 1, seconds * 1000)
                logger.info("Relay %d switched for %d seconds", relay, seconds)
            else:
                hydro.toggle_relay(relay - 1, 0)
                logger.info("Relay %d toggled", relay)
        return "OK"

    @app.post("/ec-config")
    def ec_config() -> str:
        doc = _json_body()
        base_dose = _number(doc, "baseDose")
        flow_rate = _number(doc, "flowRate")
        volume = _number(doc, "volume")
        total_ml = _number(doc, "totalMl")
        interval = _number(doc, "intervaloAutoEC", int)
        with lock:
            hydro.ec_controller.set_parameters(base_dose, flow_rate, volume, total_ml)
            hydro.auto_ec_interval_seconds = interval
            dosage = hydro.ec_controller.calculate_dosage(hydro.ec_setpoint, hydro.ec)
        logger.info(
            "EC parameters: base %.6f, flow %.6f ml/s, volume %.3f L, total %.6f ml/L, interval %ds; "
            "test dosage %.6f ml",
            base_dose, flow_rate, volume, total_ml, interval, dosage,
        )
        return "OK"

    @app.post("/ec-control")
    def ec_control() -> str:
        doc = _json_body()
        setpoint = _number(doc, "setpoint")
        enabled = _flag(doc, "autoEnabled")
        with lock:
            hydro.ec_setpoint = setpoint
            hydro.auto_ec_enabled = enabled
            error = setpoint - hydro.ec
        logger.info("EC setpoint %.0f uS/cm, auto EC %s", setpoint, "on" if enabled else "off")
        if enabled:
            if hydro.ec_controller.needs_adjustment(setpoint, setpoint - error):
                logger.info("Adjustment needed (error %.1f uS/cm)", error)
            else:
                logger.info("EC within tolerance (error %.1f uS/cm)", error)
        return "OK"

    @app.get("/ec-status")
    def ec_status() -> Response:
        with lock:
            return jsonify(ec_status_payload(hydro))

    @app.post("/calibrar")
    def calibrate() -> str:
        rate = _number(_json_body(), "taxa")
        logger.info("Dosing rate calibrated: %.2f ml/s", rate)
        return "OK"

    @app.post("/ec-calculate")
    def ec_calculate() -> Response:
        doc = _json_body()
        with lock:
            payload = ec_calculate_payload(hydro, doc)
        response = jsonify(payload)
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.post("/nutrient-proportions")
    def nutrient_proportions() -> str:
        doc = _json_body()
        ratios = [_number(doc, key) for key in ("grow", "micro", "bloom", "calmag")]
        with lock:
            hydro.set_nutrient_proportions(*(f"{ratio:.3f}" for ratio in ratios))
        return "OK"

    @app.post("/cancel-auto-ec")
    def cancel_auto_ec() -> str:
        with lock:
            hydro.auto_ec_enabled = False
            hydro.cancel_current_dosage()
            hydro.emergency_stop_all_relays()
            hydro.show_message("Auto EC Cancelado!")
        logger.warning("Auto EC cancelled: dosing stopped, relays off")
        return "OK"

    @app.post("/emergency-reset")
    def emergency_reset() -> str:
        with lock:
            hydro.emergency_system_reset()
        logger.warning("Emergency reset requested from the web interface")
        return "EMERGENCY RESET EXECUTED"

    return app


def _control_loop(hydro: HydroControl, lock: threading.RLock, period: float, stop: threading.Event) -> None:
    while not stop.is_set():
        with lock:
            hydro.update()
        stop.wait(period)


def main(argv: list[str] | None = None) -> int:
    """Run the controller loop and serve the web interface."""
    parser = argparse.ArgumentParser(prog="hydrodose", description="Hydroponic dosing web server.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--static-dir", default=DEFAULT_STATIC_DIR)
    parser.add_argument("--period", type=float, default=0.05, help="control loop period in seconds")
    args = parser.parse_args(argv)
    if args.period <= 0:
        parser.error("--period must be positive")

    logging.basicConfig(level=logging.INFO)
    hydro = HydroControl(clock=time.monotonic)
    app = create_app(hydro, args.static_dir)
    stop = threading.Event()
    worker = threading.Thread(
        target=_control_loop, args=(hydro, app.extensions[LOCK_KEY], args.period, stop), daemon=True
    )
    worker.start()
    logger.info("HTTP server started")
    try:
        app.run(host=args.host, port=args.port, threaded=True)
    finally:
        stop.set()
        worker.join(timeout=1.0)
    return 0