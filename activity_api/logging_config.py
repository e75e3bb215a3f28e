import logging
import os
from typing import Mapping, Optional

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

REDACTED_HEADERS = {"authorization", "cookie", "set-cookie"}


def setup_logging(verbosity: int = 0, level_name: Optional[str] = None) -> None:
    """Configure basic logging for all modules.

    ``verbosity`` comes from repeated ``-v`` flags: 1 selects DEBUG, 2 or more
    selects TRACE, which also logs HTTP headers. Without flags the level comes
    from ``level_name`` or the LOG_LEVEL environment variable.
    """
    if verbosity >= 2:
        level = TRACE
    elif verbosity == 1:
        level = logging.DEBUG
    else:
        level_name = (level_name or os.environ.get("LOG_LEVEL", "INFO")).upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level,
                        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    logging.getLogger().setLevel(level)

    # urllib3 connection chatter only at trace
    logging.getLogger("urllib3").setLevel(logging.DEBUG if level <= TRACE else logging.WARNING)


def is_trace_enabled(logger: Optional[logging.Logger] = None) -> bool:
    return (logger or logging.getLogger()).isEnabledFor(TRACE)


def format_headers(headers: Optional[Mapping[str, str]]) -> str:
    """Render headers for logging with credentials redacted, sorted by name."""
    if not headers:
        return "{}"

    parts = []
    for key in sorted(headers.keys()):
        value = headers[key]
        if key.lower() in REDACTED_HEADERS:
            value = "[REDACTED]"
        parts.append(f"{key}: {value!r}")
    return "{" + ", ".join(parts) + "}"
