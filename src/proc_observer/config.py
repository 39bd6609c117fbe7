"""proc-observer environment configuration.

Environment variables:
    PROC_OBSERVER_LOG_DEBUG: debug logging
        - true/1/yes = on (logs go to a temp file)
        - false/0/no = off (default, INFO to stderr)

    PROC_OBSERVER_ENCODING: encoding used to decode captured lines
        - default utf-8, undecodable bytes are replaced

    PROC_OBSERVER_DRAIN_TIMEOUT: seconds the exit path waits for a stream
        reader still blocked on its pipe after the process exits
        - unset/empty/0/none = wait until end-of-stream (default)
        - positive values are clamped to 0.1-60
        - only useful when grandchildren keep the pipes open; a reader
          busy delivering a line is always waited for

    PROC_OBSERVER_NEW_SESSION: start children in their own session
        - true/1/yes = on (default, kill() reaches the process group)
        - false/0/no = off
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_ENCODING = "utf-8"
# None = wait for end-of-stream
DEFAULT_DRAIN_TIMEOUT: float | None = None


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_encoding(value: str | None) -> str:
    """Parse the encoding name, falling back to utf-8 for unknown codecs."""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


def _parse_drain_timeout(value: str | None) -> float | None:
    """Parse the drain timeout. Zero, negative or "none" means unbounded."""
    if not value or value.strip().lower() in ("none", "unbounded"):
        return DEFAULT_DRAIN_TIMEOUT
    try:
        timeout = float(value)
    except ValueError:
        return DEFAULT_DRAIN_TIMEOUT
    if timeout <= 0:
        return None
    return max(0.1, min(timeout, 60.0))


@dataclass
class Config:
    """proc-observer configuration.

    Attributes:
        log_debug: debug logging to a file
        log_file: log file path (set automatically when log_debug=True)
        encoding: default decoding for captured streams
        drain_timeout: seconds to wait for blocked readers after exit
            (None = until end-of-stream)
        new_session: start children in a new session/process group
    """

    log_debug: bool = False
    log_file: str | None = None
    encoding: str = DEFAULT_ENCODING
    drain_timeout: float | None = DEFAULT_DRAIN_TIMEOUT
    new_session: bool = True

    def __repr__(self) -> str:
        return (
            f"Config(log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"encoding={self.encoding}, "
            f"drain_timeout={self.drain_timeout}, "
            f"new_session={self.new_session})"
        )


def _generate_log_file_path() -> str:
    """Build the debug log path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "proc-observer"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"proc_observer_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("PROC_OBSERVER_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        log_debug=log_debug,
        log_file=log_file,
        encoding=_parse_encoding(os.environ.get("PROC_OBSERVER_ENCODING")),
        drain_timeout=_parse_drain_timeout(os.environ.get("PROC_OBSERVER_DRAIN_TIMEOUT")),
        new_session=_parse_bool(os.environ.get("PROC_OBSERVER_NEW_SESSION"), default=True),
    )


# Global instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
