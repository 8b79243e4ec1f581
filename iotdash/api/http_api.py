from __future__ import annotations

import logging
import math
from typing import Any, Dict, Mapping, Optional, Sequence

from flask import Flask, request
from flask.json import jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from iotdash.core.state_engine import StateEngine
from iotdash.domain.errors import NotFoundError, TransportError, ValidationError
from iotdash.domain.models import Alert, AlertType, CommandType, DataPoint, DeviceStatus

logger = logging.getLogger(__name__)

# request body key -> ThresholdStore field
_THRESHOLD_KEYS = {
    "temperatureMax": "temperature_max",
    "temperatureMin": "temperature_min",
    "humidityMax": "humidity_max",
    "humidityMin": "humidity_min",
    "enabled": "enabled",
}

_ALERT_REQUIRED = ("id", "deviceId", "type", "value", "threshold", "timestamp", "message")


def _envelope(engine: StateEngine, data: Any = None, status: int = 200, error: Optional[str] = None):
    body: Dict[str, Any] = {"success": error is None, "timestamp": engine.clock.now_ms()}
    if error is not None:
        body["error"] = error
    else:
        body["data"] = data
    return jsonify(body), status


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _int_arg(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter '{name}' must be an integer") from None


def _bool_arg(name: str) -> Optional[bool]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    if raw.lower() in ("true", "1"):
        return True
    if raw.lower() in ("false", "0"):
        return False
    raise ValidationError(f"Query parameter '{name}' must be true or false")


def _number(body: Mapping[str, Any], key: str) -> float:
    v = body.get(key)
    if isinstance(v, bool):
        raise ValidationError(f"Field '{key}' must be a number")
    try:
        f = float(v)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Field '{key}' must be a number") from None
    if not math.isfinite(f):
        raise ValidationError(f"Field '{key}' must be a finite number")
    return f


def threshold_update_from_body(body: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Translate a camelCase threshold request body into a store update.

    Raises
    ------
    ValidationError
        If the body carries unknown keys.
    """
    unknown = sorted(k for k in body if k not in _THRESHOLD_KEYS and k != "deviceId")
    if unknown:
        raise ValidationError(f"Unknown threshold fields: {', '.join(unknown)}")
    return {_THRESHOLD_KEYS[k]: v for k, v in body.items() if k in _THRESHOLD_KEYS}


def alert_from_body(body: Mapping[str, Any]) -> Alert:
    missing = [k for k in _ALERT_REQUIRED if body.get(k) is None or body.get(k) == ""]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(_ALERT_REQUIRED)}")
    try:
        alert_type = AlertType(body["type"])
    except ValueError:
        raise ValidationError(f"Unknown alert type: {body['type']}") from None
    return Alert(
        id=str(body["id"]),
        device_id=str(body["deviceId"]),
        type=alert_type,
        value=_number(body, "value"),
        threshold=_number(body, "threshold"),
        timestamp=int(_number(body, "timestamp")),
        message=str(body["message"]),
        acknowledged=bool(body.get("acknowledged", False)),
    )


def create_app(engine: StateEngine, cors_origins: Sequence[str] = ("http://localhost:5173",)) -> Flask:
    """
    Build the Flask application exposing the engine over HTTP.

    Every response uses the envelope ``{success, data?, error?, timestamp}``.

    Parameters
    ----------
    engine
        The running state engine; routes are thin wrappers over its API.
    cors_origins
        Browser origins allowed to call the API (``"*"`` allows any).
    """
    app = Flask(__name__)
    CORS(app, origins=list(cors_origins))

    # --- Errors ---
    @app.errorhandler(ValidationError)
    def _validation(e: ValidationError):
        return _envelope(engine, status=400, error=str(e))

    @app.errorhandler(NotFoundError)
    def _not_found(e: NotFoundError):
        return _envelope(engine, status=404, error=str(e))

    @app.errorhandler(TransportError)
    def _transport(e: TransportError):
        return _envelope(engine, status=503, error=str(e))

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        if e.code == 404:
            return _envelope(engine, status=404, error=f"Route {request.method} {request.path} not found")
        return _envelope(engine, status=e.code or 500, error=e.description or e.name)

    @app.errorhandler(Exception)
    def _unexpected(e: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.path)
        return _envelope(engine, status=500, error="Internal server error")

    @app.get("/health")
    def health():
        return _envelope(engine, {"status": "ok", **engine.stats()})

    # --- Devices ---
    @app.get("/api/devices")
    def list_devices():
        return _envelope(engine, [d.to_dict() for d in engine.list_devices()])

    @app.get("/api/devices/<device_id>")
    def get_device(device_id: str):
        return _envelope(engine, engine.get_device(device_id).to_dict())

    @app.post("/api/devices/<device_id>")
    def upsert_device(device_id: str):
        body = _json_body()
        name = body.get("name")
        if name is not None and not isinstance(name, str):
            raise ValidationError("Field 'name' must be a string")
        status = body.get("status")
        try:
            status_enum = DeviceStatus(status) if status is not None else None
        except ValueError:
            raise ValidationError(f"Unknown device status: {status}") from None

        dev = engine.register_device(device_id, display_name=name or None)
        if status_enum is not None:
            dev = engine.set_device_status(device_id, status_enum)
        return _envelope(engine, dev.to_dict())

    @app.delete("/api/devices/<device_id>")
    def delete_device(device_id: str):
        engine.remove_device(device_id)
        return _envelope(engine, {"id": device_id})

    @app.post("/api/devices/<device_id>/command")
    def send_command(device_id: str):
        body = _json_body()
        try:
            command = CommandType(body.get("command"))
        except ValueError:
            raise ValidationError(f"Unknown command: {body.get('command')}") from None
        cmd = engine.send_command(device_id, command)
        return _envelope(engine, cmd.to_dict())

    # --- History ---
    def _history(device_id: Optional[str]):
        page = engine.history(
            device_id=device_id,
            from_ms=_int_arg("from"),
            to_ms=_int_arg("to"),
            page=_int_arg("page", 1),  # type: ignore[arg-type]
            limit=_int_arg("limit", 100),  # type: ignore[arg-type]
        )
        return _envelope(engine, page.to_dict())

    @app.get("/api/history")
    def history_all():
        return _history(request.args.get("deviceId") or None)

    @app.get("/api/history/<device_id>")
    def history_device(device_id: str):
        return _history(device_id)

    @app.post("/api/history/<device_id>")
    def append_history(device_id: str):
        body = _json_body()
        if not body.get("timestamp") or body.get("temperature") is None or body.get("humidity") is None:
            raise ValidationError("Missing required fields: timestamp, temperature, humidity")
        point = DataPoint(
            timestamp=int(_number(body, "timestamp")),
            temperature=_number(body, "temperature"),
            humidity=_number(body, "humidity"),
        )
        return _envelope(engine, engine.append_point(device_id, point).to_dict())

    # --- Thresholds ---
    @app.get("/api/thresholds")
    def list_thresholds():
        return _envelope(engine, [t.to_dict() for t in engine.list_thresholds()])

    @app.get("/api/thresholds/<device_id>")
    def get_threshold(device_id: str):
        return _envelope(engine, engine.get_threshold(device_id).to_dict())

    @app.post("/api/thresholds/<device_id>")
    def set_threshold(device_id: str):
        update = threshold_update_from_body(_json_body())
        return _envelope(engine, engine.set_threshold(device_id, update).to_dict())

    @app.post("/api/thresholds/<device_id>/reset")
    def reset_threshold(device_id: str):
        return _envelope(engine, engine.reset_threshold(device_id).to_dict())

    @app.delete("/api/thresholds/<device_id>")
    def delete_threshold(device_id: str):
        return _envelope(engine, engine.remove_threshold(device_id).to_dict())

    # --- Alerts ---
    @app.get("/api/alerts")
    def list_alerts():
        raw_type = request.args.get("type") or None
        try:
            alert_type = AlertType(raw_type) if raw_type else None
        except ValueError:
            raise ValidationError(f"Unknown alert type: {raw_type}") from None
        alerts = engine.list_alerts(
            device_id=request.args.get("deviceId") or None,
            acknowledged=_bool_arg("acknowledged"),
            alert_type=alert_type,
        )
        return _envelope(engine, [a.to_dict() for a in alerts])

    @app.post("/api/alerts")
    def create_alert():
        alert, stored = engine.create_alert(alert_from_body(_json_body()))
        if not stored:
            return _envelope(engine, {**alert.to_dict(), "suppressed": True})
        return _envelope(engine, alert.to_dict(), status=201)

    @app.get("/api/alerts/<alert_id>")
    def get_alert(alert_id: str):
        return _envelope(engine, engine.get_alert(alert_id).to_dict())

    @app.post("/api/alerts/<alert_id>/ack")
    def ack_alert(alert_id: str):
        alert = engine.acknowledge_alert(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return _envelope(engine, alert.to_dict())

    @app.delete("/api/alerts/<alert_id>")
    def delete_alert(alert_id: str):
        return _envelope(engine, engine.clear_alert(alert_id).to_dict())

    return app


def run_http(app: Flask, host: str, port: int) -> None:
    """Serve the app with Flask's built-in server (blocking)."""
    logger.info("HTTP API listening on http://%s:%d", host, port)
    app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
