import logging
import sys

import structlog
from loguru import logger as loguru_logger

from infrastructure.config import settings

# Chatty client libraries; their INFO lines are per-request transport noise
NOISY_LOGGERS = (
    "google.auth.transport.requests",
    "google.api_core.bidi",
    "urllib3.connectionpool",
    "grpc",
    "uvicorn.access",
)


def _renderer(json_output: bool):
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def build_formatter(json_output: bool, pre_chain: list) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.dict_tracebacks if json_output else structlog.processors.format_exc_info,
            _renderer(json_output),
        ],
    )


def configure_logging():
    """
    Sets up both log pipelines used by the backend.

    structlog carries the HTTP layer (request id, uid, latency) and is rendered
    as JSON in production so Cloud Logging can index the fields. The user data
    services log through loguru; its sink is pointed at the same stream with the
    same level and serialised to JSON in production as well.
    """
    json_output = settings.ENVIRONMENT == "production"
    level = settings.LOG_LEVEL.upper()

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    # Rendering happens once, in the stdlib formatter, for structlog events and foreign records alike
    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # firebase-admin and google-cloud log through stdlib logging
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(json_output, pre_chain))
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    loguru_logger.remove()
    loguru_logger.add(sys.stdout, level=level, serialize=json_output, backtrace=False)

    structlog.get_logger().info("logging_configured", env=settings.ENVIRONMENT, level=level)
