"""Logging setup for the b2c CLI and SDK consumers."""

from __future__ import annotations

import logging
import sys

from b2c_tooling.settings import LoggingSettings

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

REDACT_FIELDS = frozenset(
    {
        "password",
        "client_secret",
        "access_token",
        "refresh_token",
        "api_key",
        "token",
        "secret",
        "authorization",
    }
)

_HANDLER_NAME = "b2c_tooling"


def redact(value: object) -> str:
    """Mask a secret, keeping the auth scheme and a short prefix for debugging."""
    text = str(value)
    scheme, _, credentials = text.partition(" ")
    if credentials and scheme.lower() in {"basic", "bearer"}:
        return f"{scheme} {credentials[:6]}...REDACTED"
    if len(text) > 10:
        return f"{text[:4]}...REDACTED"
    return "REDACTED"


class RedactingFilter(logging.Filter):
    """Mask secret values passed through ``extra=`` before they are formatted."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in list(record.__dict__.items()):
            if key.lower() in REDACT_FIELDS and value is not None:
                setattr(record, key, redact(value))
            elif key == "headers" and isinstance(value, dict):
                record.headers = {
                    name: redact(item) if name.lower() in REDACT_FIELDS else item
                    for name, item in value.items()
                }
        return True


def configure_logging(level: str | None = None, *, to_stdout: bool | None = None) -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Explicit arguments win over ``SFCC_LOG_*`` environment settings. Calling it
    again replaces the previous handler instead of stacking a new one.
    """
    settings = LoggingSettings()
    effective = LoggingSettings(
        level=level if level is not None else settings.level,
        to_stdout=to_stdout if to_stdout is not None else settings.to_stdout,
    )

    logger = logging.getLogger("b2c_tooling")
    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)

    if effective.level == "silent":
        logger.setLevel(logging.CRITICAL + 1)
        logger.propagate = False
        return logger

    handler = logging.StreamHandler(sys.stdout if effective.to_stdout else sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.addFilter(RedactingFilter())
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(_LEVELS[effective.level])
    logger.propagate = False
    return logger
