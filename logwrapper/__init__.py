"""Leveled, structured logging with a one-shot setup.

See `README.md` for usage and `DESIGN.md` for design intent.
"""

__all__ = [
    "__version__",
    "CALLER_SKIP",
    "Entry",
    "Fields",
    "LoggerHandle",
    "debug",
    "default_handle",
    "error",
    "fatal",
    "get_caller",
    "info",
    "level_name",
    "parse_level",
    "setup",
    "warn",
]

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("logwrapper")
except Exception:  # pragma: no cover
    __version__ = "0.0.0"

from logwrapper.caller import CALLER_SKIP, get_caller  # noqa: E402
from logwrapper.logging import (  # noqa: E402  (intentional re-export)
    Entry,
    Fields,
    LoggerHandle,
    debug,
    default_handle,
    error,
    fatal,
    info,
    level_name,
    parse_level,
    setup,
    warn,
)
