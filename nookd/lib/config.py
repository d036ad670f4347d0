"""
Shared configuration loader for nookd.

Loads a single JSON config file per host.  Search order:
  1. $NOOKD_CONFIG                  (explicit override)
  2. /etc/nookd/config.json         (system-wide install)
  3. ~/.config/nookd/config.json    (per-user)
  4. config.json                    (CWD — handy for local dev)

Command-line flags always win over the file; the file wins over built-in
defaults.  The daemon changes directory to / after detaching, so the file is
read once, before that happens.

Usage:
    from .config import cfg

    origin      = cfg("content", "origin", default=ORIGIN)
    lock_path   = cfg("daemon", "lock_file", default="/tmp/nookd.lock")
    game_volume = cfg("playback", "game_volume")
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/nookd/config.json",
    os.path.join(os.path.expanduser("~"), ".config", "nookd", "config.json"),
    "config.json",
]

FAILURE_POLICIES = ("exit", "continue")


def _search_paths() -> list[str]:
    override = os.environ.get("NOOKD_CONFIG")
    if override:
        return [override] + _SEARCH_PATHS
    return list(_SEARCH_PATHS)


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    content = config.get("content") or {}
    origin = content.get("origin")
    if origin and not str(origin).startswith("https://"):
        logger.warning("Config %s: content.origin '%s' is not an https:// URL", path, origin)
    playback = config.get("playback") or {}
    for key in ("game_volume", "rain_volume"):
        vol = playback.get(key)
        if vol is None:
            continue
        if not isinstance(vol, (int, float)) or not 0 <= vol <= 100:
            logger.warning("Config %s: playback.%s should be 0-100, got %r", path, key, vol)
    policy = playback.get("on_stream_failure")
    if policy is not None and policy not in FAILURE_POLICIES:
        logger.warning("Config %s: unknown playback.on_stream_failure '%s', using 'exit'",
                       path, policy)
    daemon = config.get("daemon") or {}
    lock_file = daemon.get("lock_file")
    if lock_file and not os.path.isabs(lock_file):
        # Relative paths would resolve against / once detached
        logger.warning("Config %s: daemon.lock_file '%s' is not absolute", path, lock_file)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.debug("No config.json found — using built-in defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("log")                        → config["log"]
    cfg("daemon", "lock_file")        → config["daemon"]["lock_file"]
    cfg("playback", "rain", default="normal") → config["playback"]["rain"] or "normal"
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        found = val.get(key)
        return found if found is not None else default
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
