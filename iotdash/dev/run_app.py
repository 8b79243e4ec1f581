from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv

from iotdash.api.http_api import run_http
from iotdash.bootstrap import build_app_system
from iotdash.core.config.yaml_config import load_app_config
from iotdash.core.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    """
    Start the engine runtime threads and serve the HTTP API.

    Notes
    -----
    - Loads ``.env`` from the working directory first, so environment
      overrides (SERVER_PORT, MQTT_BROKER_URL, ...) can live there.
    - Loads configuration from ``config.yaml`` by default.
    - Optional CLI usage:
        python -m iotdash.dev.run_app --config path/to/config.yaml
    """
    load_dotenv()

    config_path = None
    if "--config" in sys.argv:
        i = sys.argv.index("--config")
        if i + 1 < len(sys.argv):
            config_path = sys.argv[i + 1]

    cfg = load_app_config(config_path)
    configure_logging(cfg.logging.level)

    wiring = build_app_system(cfg=cfg)
    wiring.runtime.start()
    try:
        run_http(wiring.app, host=cfg.http.host, port=cfg.http.port)
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        wiring.runtime.stop()
        if wiring.notifier is not None:
            wiring.notifier.stop()


if __name__ == "__main__":
    main()
