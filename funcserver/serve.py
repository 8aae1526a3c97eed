"""Process entry point: configure logging and serve registered functions."""

import logging
from typing import Optional

from aiohttp import web

from funcframework.config import FrameworkConfig, load_config
from funcframework.logging_utils import configure_json_logging
from funcframework.registry import Registry
from funcserver.http_handler import init_server

logger = logging.getLogger(__name__)


def start(
    port: Optional[int] = None,
    registry: Optional[Registry] = None,
    config: Optional[FrameworkConfig] = None,
) -> None:
    """Serve registered functions until the process is stopped.

    Args:
        port: Port to listen on, overriding the configured one
        registry: Function registry, the default registry when omitted
        config: Framework configuration, loaded from the environment when omitted

    Raises:
        ConfigurationError: If the configuration or function target is invalid
    """
    if config is None:
        config = load_config()
    configure_json_logging(level=config.log_level, pretty=config.pretty_logs)

    app = init_server(registry=registry, config=config)
    port = port or config.port

    logger.info(f"Functions framework listening on port {port}")
    web.run_app(app, port=port, print=None)
