"""
Sandstorm Tracker - Configuration
Server watch targets from a JSON file plus environment overrides
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from tracker.utils.exceptions import ConfigurationException
from tracker.utils.input_validator import InputValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerWatchTarget:
    """One game server log to follow"""
    server_id: str
    display_name: str
    log_directory: str
    log_file_name: str
    enabled: bool = True
    notify_channel_id: Optional[int] = None

    @property
    def log_path(self) -> str:
        return os.path.join(self.log_directory, self.log_file_name)


@dataclass
class TrackerConfig:
    """Runtime settings, read once at startup"""
    mongo_uri: Optional[str] = None
    discord_token: Optional[str] = None
    notify_channel_id: Optional[int] = None
    servers_config: str = 'servers.json'
    log_level: str = 'INFO'
    inactivity_threshold: float = 10.0
    crash_check_interval: float = 5.0
    debounce_seconds: float = 0.1
    watch_use_polling: bool = False
    shutdown_grace_seconds: float = 10.0
    cursor_flush_interval: float = 30.0
    health_retry_interval: float = 30.0

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> 'TrackerConfig':
        """Build the config from environment variables"""
        env = os.environ if env is None else env

        log_level = InputValidator.validate_log_level(env.get('LOG_LEVEL', 'INFO'))
        if log_level is None:
            raise ConfigurationException(f"Invalid LOG_LEVEL: {env.get('LOG_LEVEL')}")

        channel = env.get('NOTIFY_CHANNEL_ID')
        if channel:
            try:
                channel = int(channel)
            except ValueError:
                raise ConfigurationException(f"Invalid NOTIFY_CHANNEL_ID: {channel}")

        return cls(
            mongo_uri=env.get('MONGO_URI') or env.get('MONGODB_URI'),
            discord_token=env.get('BOT_TOKEN') or env.get('DISCORD_TOKEN'),
            notify_channel_id=channel or None,
            servers_config=env.get('SERVERS_CONFIG', 'servers.json'),
            log_level=log_level,
            inactivity_threshold=_number(env, 'INACTIVITY_THRESHOLD', 10.0, 1.0, 86400.0),
            crash_check_interval=_number(env, 'CRASH_CHECK_INTERVAL', 5.0, 1.0, 3600.0),
            debounce_seconds=_number(env, 'DEBOUNCE_SECONDS', 0.1, 0.05, 5.0),
            watch_use_polling=env.get('WATCH_USE_POLLING', 'false').lower() in ('1', 'true', 'yes'),
            shutdown_grace_seconds=_number(env, 'SHUTDOWN_GRACE_SECONDS', 10.0, 0.0, 600.0),
        )


def _number(env, name: str, default: float, min_val: float, max_val: float) -> float:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    value = InputValidator.validate_number(raw, min_val, max_val)
    if value is None:
        raise ConfigurationException(f"Invalid {name}: {raw!r} (expected {min_val}-{max_val})")
    return value


def parse_server_targets(entries: List[Dict[str, Any]]) -> List[ServerWatchTarget]:
    """Validate raw server entries and build watch targets"""
    if not isinstance(entries, list):
        raise ConfigurationException("Server configuration must be a list")

    targets = []
    seen = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigurationException(f"Server entry {index} is not an object")

        enabled = bool(entry.get('enabled', True))
        server_id = InputValidator.validate_server_id(entry.get('id'))
        if server_id is None:
            raise ConfigurationException(f"Server entry {index} has an invalid id: {entry.get('id')!r}")
        if server_id in seen:
            raise ConfigurationException(f"Duplicate server id: {server_id}")
        seen.add(server_id)

        if not enabled:
            logger.info(f"Server {server_id} disabled, skipping")
            continue

        name = InputValidator.validate_display_name(entry.get('name', server_id))
        if name is None:
            raise ConfigurationException(f"Server {server_id} has an invalid name")

        directory = InputValidator.validate_directory(entry.get('logPath'))
        if directory is None:
            raise ConfigurationException(
                f"Server {server_id} log directory is missing or unreadable: {entry.get('logPath')!r}")

        file_name = InputValidator.validate_file_name(entry.get('logFileName', f"{server_id}.log"))
        if file_name is None:
            raise ConfigurationException(f"Server {server_id} has an invalid logFileName")

        channel = entry.get('notifyChannelId')
        try:
            channel = int(channel) if channel else None
        except (TypeError, ValueError):
            raise ConfigurationException(f"Server {server_id} has an invalid notifyChannelId")

        targets.append(ServerWatchTarget(server_id, name, directory, file_name, True, channel))

    return targets


def load_server_targets(path: str) -> List[ServerWatchTarget]:
    """Load and validate the servers file"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationException(f"Servers file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigurationException(f"Servers file is not valid JSON: {e}")

    if isinstance(data, dict):
        data = data.get('servers', [])

    targets = parse_server_targets(data)
    logger.info(f"✅ Loaded {len(targets)} server targets from {path}")
    return targets
