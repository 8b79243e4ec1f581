from __future__ import annotations

from dataclasses import dataclass
from queue import Queue
from typing import List, Optional

from flask import Flask

from iotdash.api.http_api import create_app
from iotdash.core.clock import Clock
from iotdash.core.config.yaml_config import AppConfig, load_app_config
from iotdash.core.state_engine import CommandSink, EngineConfig, StateEngine
from iotdash.notification.notification_thread import NotificationWorkerThread
from iotdash.notification.webhook_notifier import WebhookConfig, WebhookNotifier
from iotdash.runtime.app_runtime import AppRuntime
from iotdash.runtime.command_router import CommandRouter
from iotdash.runtime.event_bus import EventBus
from iotdash.simulator.mock_devices import MockDeviceSimulator
from iotdash.transport.codec import InboundMessage
from iotdash.transport.mqtt_bridge import MqttBridge, MqttBridgeConfig


@dataclass(frozen=True)
class AppWiring:
    """Everything the entry point needs to run the system."""
    config: AppConfig
    engine: StateEngine
    notifier: Optional[NotificationWorkerThread]
    runtime: AppRuntime
    app: Flask


def build_engine_config(cfg: AppConfig) -> EngineConfig:
    return EngineConfig(
        buffer_capacity=cfg.engine.buffer_capacity,
        offline_timeout_ms=cfg.engine.offline_timeout_ms,
        alert_cooldown_ms=cfg.engine.alert_cooldown_ms,
        default_threshold=cfg.engine.default_threshold.to_threshold(),
    )


def build_notifier(cfg: AppConfig) -> Optional[NotificationWorkerThread]:
    """Webhook delivery thread, or None when no webhook URL is configured."""
    if not cfg.webhook.url:
        return None

    auth_header = cfg.webhook.auth_header
    if auth_header and not auth_header.startswith("Bearer "):
        auth_header = f"Bearer {auth_header}"

    return NotificationWorkerThread(
        notifiers=[
            WebhookNotifier(
                WebhookConfig(
                    url=cfg.webhook.url,
                    auth_header=auth_header,
                    timeout_s=cfg.webhook.timeout_s,
                    verify_tls=cfg.webhook.verify_tls,
                )
            )
        ]
    )


def build_app_system(
    config_path: Optional[str] = None,
    cfg: Optional[AppConfig] = None,
    clock: Optional[Clock] = None,
) -> AppWiring:
    """
    Wire engine, transports, runtime threads and the HTTP app from config.

    Nothing is started except the notifier thread; call ``runtime.start()``.
    """
    cfg = cfg or load_app_config(config_path)

    # --- NOTIFICATIONS ---
    notifier = build_notifier(cfg)
    if notifier is not None:
        notifier.start()

    # --- EVENT BUS ---
    bus = EventBus() if notifier is not None else None

    # --- ENGINE ---
    engine = StateEngine(cfg=build_engine_config(cfg), clock=clock, bus=bus)

    # --- TRANSPORTS ---
    inbound_q: "Queue[InboundMessage]" = Queue(maxsize=5000)
    sinks: List[CommandSink] = []

    simulator: Optional[MockDeviceSimulator] = None
    if cfg.simulator.enabled:
        simulator = MockDeviceSimulator(
            emit=inbound_q.put_nowait,
            clock=engine.clock,
            interval_ms=cfg.simulator.interval_ms,
            seed=cfg.simulator.seed,
        )
        for d in simulator.devices:
            engine.register_device(d.id, display_name=d.name)
        sinks.append(simulator)

    bridge: Optional[MqttBridge] = None
    if cfg.mqtt.enabled:
        bridge = MqttBridge(
            MqttBridgeConfig(
                broker_url=cfg.mqtt.broker_url,
                client_id=cfg.mqtt.client_id,
                username=cfg.mqtt.username,
                password=cfg.mqtt.password,
                keepalive_s=cfg.mqtt.keepalive_s,
                qos=cfg.mqtt.qos,
            ),
            inbound_q=inbound_q,
            clock=engine.clock,
        )
        sinks.append(bridge)

    engine.command_sink = CommandRouter(sinks)

    # --- RUNTIME ---
    runtime = AppRuntime(
        engine=engine,
        inbound_q=inbound_q,
        bus=bus,
        notifier=notifier,
        bridge=bridge,
        simulator=simulator,
        liveness_interval_ms=cfg.engine.liveness_interval_ms,
    )

    app = create_app(engine, cfg.http.cors_origins)
    return AppWiring(config=cfg, engine=engine, notifier=notifier, runtime=runtime, app=app)
