from __future__ import annotations

import errno
import logging
import re
import sys
from typing import Any, TextIO

import structlog


TELEGRAM_TOKEN_RE = re.compile(r"bot\d+:[A-Za-z0-9_-]+")
TELEGRAM_BARE_TOKEN_RE = re.compile(r"\b\d+:[A-Za-z0-9_-]{10,}\b")
OPENAI_KEY_RE = re.compile(r"\bsk-[A-Za-z0-9_-]{10,}\b")


def redact_secrets(message: str) -> str:
    redacted = TELEGRAM_TOKEN_RE.sub("bot[REDACTED]", message)
    redacted = TELEGRAM_BARE_TOKEN_RE.sub("[REDACTED_TOKEN]", redacted)
    return OPENAI_KEY_RE.sub("sk-[REDACTED]", redacted)


def redact_token_processor(_, __, event_dict):
    """Processor to redact bot tokens and API keys from log events."""
    for key, value in event_dict.items():
        if not isinstance(value, str):
            continue
        redacted = redact_secrets(value)
        if redacted != value:
            event_dict[key] = redacted
    return event_dict


def _is_broken_pipe(exc: BaseException | None) -> bool:
    if isinstance(exc, BrokenPipeError):
        return True
    return isinstance(exc, OSError) and exc.errno == errno.EPIPE


class SafeStreamHandler(logging.StreamHandler):
    """Stream handler that goes quiet once stdout's reader has gone away."""

    def handleError(self, record: logging.LogRecord) -> None:
        if not _is_broken_pipe(sys.exc_info()[1]):
            super().handleError(record)
            return
        try:
            self.stream.close()
        except OSError:
            pass


# Chatty third-party loggers, capped at WARNING.
QUIET_LOGGERS = ("markdown_it", "httpcore", "httpx", "redis")


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def _renderer(debug: bool) -> Any:
    if debug:
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def setup_logging(*, debug: bool = False, stream: TextIO | None = None) -> None:
    """Route structlog through stdlib logging.

    Debug mode renders colored console lines, otherwise one JSON object per
    event. Secrets are scrubbed right before rendering, so every field a
    caller binds is covered.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_token_processor,
            _renderer(debug),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = SafeStreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=[handler],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
