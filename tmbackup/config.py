"""Configuration management for tmbackup.

Settings live in a TOML file with three tables::

    [retention]   how snapshots age out
    [sync]        how rsync is run and how a full destination is handled
    [logging]     where logs go and how they rotate

Every key is optional. When no file is given and the default file does not
exist, the built-in defaults apply.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import tomllib


class ConfigurationError(Exception):
    """Raised when configuration file is missing or malformed."""
    pass


class ValidationError(Exception):
    """Raised when configuration values have invalid types."""
    pass


@dataclass
class RetentionConfig:
    """Thresholds of the three-tier aging policy, in days."""
    keep_all_days: int = 1  # Keep everything younger than this
    keep_daily_days: int = 31  # Then one per day up to this age, one per month beyond


@dataclass
class SyncConfig:
    """rsync invocation and the destination-full retry loop."""
    rsync_path: str = "rsync"
    extra_flags: List[str] = field(default_factory=list)
    timeout_seconds: int = 0  # 0 = no timeout
    auto_expire: bool = True  # Expire the oldest snapshot when the destination is full
    max_exhaustion_retries: int = 0  # 0 = retry while snapshots remain


def _default_log_dir() -> Path:
    return Path.home() / ".local/log"


@dataclass
class LoggingConfig:
    """Log destinations and rotation."""
    level: str = "INFO"  # "DEBUG", "INFO", "WARNING", "ERROR"
    log_file: Path = field(default_factory=lambda: _default_log_dir() / "tmbackup.log")
    error_log_file: Path = field(default_factory=lambda: _default_log_dir() / "tmbackup.err")
    log_max_size_mb: int = 10  # Rotate once a file reaches this size
    log_backup_count: int = 5  # Rotated files kept per log

    @property
    def log_max_bytes(self) -> int:
        return self.log_max_size_mb * 1024 * 1024


@dataclass
class Configuration:
    """Complete tmbackup configuration."""
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


DEFAULT_CONFIG_PATH = Path.home() / ".config/tmbackup/config.toml"


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    """Validate that a value has the expected type."""
    # TOML booleans are Python bools, which are also ints
    if expected_type is int and isinstance(value, bool):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected int, got bool"
        )
    if not isinstance(value, expected_type):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, "
            f"got {type(value).__name__}"
        )


def _get(table: Dict[str, Any], section: str, key: str, expected_type: type,
         default: Any, non_negative: bool = False) -> Any:
    """Read one key of a table, falling back to its default."""
    value = table.get(key, default)
    name = f"{section}.{key}"
    _validate_type(value, expected_type, name)
    if non_negative and value < 0:
        raise ValidationError(f"Key '{name}' must not be negative, got {value}")
    return value


def _table(data: Dict[str, Any], section: str) -> Dict[str, Any]:
    table = data.get(section, {})
    _validate_type(table, dict, section)
    return table


def _parse_retention_config(data: Dict[str, Any]) -> RetentionConfig:
    table = _table(data, "retention")
    defaults = RetentionConfig()

    config = RetentionConfig(
        keep_all_days=_get(table, "retention", "keep_all_days", int,
                           defaults.keep_all_days, non_negative=True),
        keep_daily_days=_get(table, "retention", "keep_daily_days", int,
                             defaults.keep_daily_days, non_negative=True),
    )
    if config.keep_daily_days < config.keep_all_days:
        raise ValidationError(
            "Key 'retention.keep_daily_days' must be at least "
            "'retention.keep_all_days'"
        )
    return config


def _parse_sync_config(data: Dict[str, Any]) -> SyncConfig:
    table = _table(data, "sync")
    defaults = SyncConfig()

    extra_flags = _get(table, "sync", "extra_flags", list, defaults.extra_flags)
    for i, flag in enumerate(extra_flags):
        _validate_type(flag, str, f"sync.extra_flags[{i}]")

    return SyncConfig(
        rsync_path=_get(table, "sync", "rsync_path", str, defaults.rsync_path),
        extra_flags=list(extra_flags),
        timeout_seconds=_get(table, "sync", "timeout_seconds", int,
                             defaults.timeout_seconds, non_negative=True),
        auto_expire=_get(table, "sync", "auto_expire", bool, defaults.auto_expire),
        max_exhaustion_retries=_get(table, "sync", "max_exhaustion_retries", int,
                                    defaults.max_exhaustion_retries, non_negative=True),
    )


def _parse_logging_config(data: Dict[str, Any]) -> LoggingConfig:
    table = _table(data, "logging")
    defaults = LoggingConfig()

    return LoggingConfig(
        level=_get(table, "logging", "level", str, defaults.level),
        log_file=Path(_get(table, "logging", "log_file", str, str(defaults.log_file))),
        error_log_file=Path(_get(table, "logging", "error_log_file", str,
                                 str(defaults.error_log_file))),
        log_max_size_mb=_get(table, "logging", "log_max_size_mb", int,
                             defaults.log_max_size_mb, non_negative=True),
        log_backup_count=_get(table, "logging", "log_backup_count", int,
                              defaults.log_backup_count, non_negative=True),
    )


def parse_config_string(toml_content: str) -> Configuration:
    """
    Build a Configuration from TOML text.

    Raises:
        ConfigurationError: If the text is not valid TOML
        ValidationError: If a value has the wrong type or range
    """
    try:
        data = tomllib.loads(toml_content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML format: {e}")

    return Configuration(
        retention=_parse_retention_config(data),
        sync=_parse_sync_config(data),
        logging=_parse_logging_config(data),
    )


def parse_config(config_path: Optional[Path] = None) -> Configuration:
    """
    Load the configuration file.

    Args:
        config_path: Explicit file to read. When None, DEFAULT_CONFIG_PATH
            is read if present and the defaults are returned otherwise.

    Raises:
        ConfigurationError: If an explicitly given file is missing or
            unreadable, or the TOML is malformed
        ValidationError: If a value has the wrong type or range
    """
    if config_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return Configuration()
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {config_path}: {e}")

    return parse_config_string(content)


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, list):
        if not value:
            return "[]"
        items = "".join(f"    {_toml_value(item)},\n" for item in value)
        return f"[\n{items}]"
    # Backslashes first so the quote escapes are not doubled
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_config(config: Configuration) -> str:
    """Render a Configuration as TOML that parse_config_string reads back."""
    sections = {
        "retention": {
            "keep_all_days": config.retention.keep_all_days,
            "keep_daily_days": config.retention.keep_daily_days,
        },
        "sync": {
            "rsync_path": config.sync.rsync_path,
            "extra_flags": config.sync.extra_flags,
            "timeout_seconds": config.sync.timeout_seconds,
            "auto_expire": config.sync.auto_expire,
            "max_exhaustion_retries": config.sync.max_exhaustion_retries,
        },
        "logging": {
            "level": config.logging.level,
            "log_file": config.logging.log_file,
            "error_log_file": config.logging.error_log_file,
            "log_max_size_mb": config.logging.log_max_size_mb,
            "log_backup_count": config.logging.log_backup_count,
        },
    }

    blocks = []
    for section, values in sections.items():
        lines = [f"[{section}]"]
        lines.extend(f"{key} = {_toml_value(value)}" for key, value in values.items())
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def create_default_config() -> str:
    """Return a commented configuration file holding the defaults."""
    return '''# tmbackup configuration
# Every key is optional; the values below are the defaults.

[retention]
# Keep every snapshot younger than this many days
keep_all_days = 1
# Keep one snapshot per day up to this age, then one per month
keep_daily_days = 31

[sync]
rsync_path = "rsync"
# Flags appended after the standard rsync flag set
extra_flags = []
# Kill rsync after this many seconds (0 = never)
timeout_seconds = 0
# When the destination is full, expire the oldest snapshot and retry
auto_expire = true
# Give up after this many destination-full retries (0 = no limit)
max_exhaustion_retries = 0

[logging]
# DEBUG, INFO, WARNING or ERROR
level = "INFO"
log_file = "~/.local/log/tmbackup.log"
error_log_file = "~/.local/log/tmbackup.err"
log_max_size_mb = 10
log_backup_count = 5
'''
