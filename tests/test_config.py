"""Tests for configuration parsing and formatting."""

from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

import tmbackup.config as config_module
from tmbackup.config import (
    Configuration,
    ConfigurationError,
    LoggingConfig,
    RetentionConfig,
    SyncConfig,
    ValidationError,
    create_default_config,
    format_config,
    parse_config,
    parse_config_string,
)


class TestDefaults:

    def test_empty_file_gives_defaults(self):
        config = parse_config_string("")
        assert config.retention == RetentionConfig()
        assert config.sync == SyncConfig()
        assert config.logging.level == "INFO"

    def test_default_values(self):
        config = Configuration()
        assert config.retention.keep_all_days == 1
        assert config.retention.keep_daily_days == 31
        assert config.sync.rsync_path == "rsync"
        assert config.sync.auto_expire is True
        assert config.sync.max_exhaustion_retries == 0
        assert config.logging.log_max_bytes == 10 * 1024 * 1024

    def test_missing_default_file_gives_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "none.toml")
        assert parse_config() == Configuration()

    def test_default_file_is_read_when_present(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text("[retention]\nkeep_all_days = 2\n")
        monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", path)
        assert parse_config().retention.keep_all_days == 2

    def test_commented_default_config_matches_defaults(self):
        config = parse_config_string(create_default_config())
        assert config.retention == RetentionConfig()
        assert config.sync == SyncConfig()


class TestParsing:

    def test_full_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            "[retention]\n"
            "keep_all_days = 2\n"
            "keep_daily_days = 14\n"
            "\n"
            "[sync]\n"
            'rsync_path = "/usr/local/bin/rsync"\n'
            'extra_flags = ["--delete", "--acls"]\n'
            "timeout_seconds = 3600\n"
            "auto_expire = false\n"
            "max_exhaustion_retries = 5\n"
            "\n"
            "[logging]\n"
            'level = "DEBUG"\n'
            f'log_file = "{tmp_path / "t.log"}"\n'
            f'error_log_file = "{tmp_path / "t.err"}"\n'
            "log_max_size_mb = 1\n"
            "log_backup_count = 2\n"
        )

        config = parse_config(path)

        assert config.retention == RetentionConfig(keep_all_days=2, keep_daily_days=14)
        assert config.sync == SyncConfig(
            rsync_path="/usr/local/bin/rsync",
            extra_flags=["--delete", "--acls"],
            timeout_seconds=3600,
            auto_expire=False,
            max_exhaustion_retries=5,
        )
        assert config.logging == LoggingConfig(
            level="DEBUG",
            log_file=tmp_path / "t.log",
            error_log_file=tmp_path / "t.err",
            log_max_size_mb=1,
            log_backup_count=2,
        )

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            parse_config(tmp_path / "missing.toml")

    def test_malformed_toml(self):
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            parse_config_string("[retention\nkeep_all_days = ")

    @pytest.mark.parametrize("content", [
        '[retention]\nkeep_all_days = "1"\n',
        "[retention]\nkeep_daily_days = true\n",
        "[sync]\nrsync_path = 5\n",
        "[sync]\nextra_flags = [1, 2]\n",
        '[sync]\nauto_expire = "yes"\n',
        "[sync]\ntimeout_seconds = 1.5\n",
        "[logging]\nlevel = 10\n",
    ])
    def test_wrong_types(self, content):
        with pytest.raises(ValidationError, match="invalid type"):
            parse_config_string(content)

    @pytest.mark.parametrize("content", [
        "[retention]\nkeep_all_days = -1\n",
        "[sync]\nmax_exhaustion_retries = -2\n",
        "[sync]\ntimeout_seconds = -10\n",
    ])
    def test_negative_values(self, content):
        with pytest.raises(ValidationError, match="must not be negative"):
            parse_config_string(content)

    def test_daily_window_shorter_than_keep_all(self):
        with pytest.raises(ValidationError, match="keep_daily_days"):
            parse_config_string("[retention]\nkeep_all_days = 10\nkeep_daily_days = 5\n")


class TestFormatting:

    @given(
        keep_all=st.integers(min_value=0, max_value=30),
        extra_days=st.integers(min_value=0, max_value=365),
        flags=st.lists(st.text(
            alphabet=st.characters(blacklist_categories=("Cs", "Cc")),
            max_size=20,
        ), max_size=4),
        auto_expire=st.booleans(),
        retries=st.integers(min_value=0, max_value=100),
    )
    def test_format_then_parse_preserves_values(self, keep_all, extra_days, flags,
                                                auto_expire, retries):
        config = Configuration(
            retention=RetentionConfig(keep_all_days=keep_all, keep_daily_days=keep_all + extra_days),
            sync=SyncConfig(extra_flags=flags, auto_expire=auto_expire,
                            max_exhaustion_retries=retries),
            logging=LoggingConfig(log_file=Path("/var/log/a b.log"),
                                  error_log_file=Path('/var/log/"q".err')),
        )
        assert parse_config_string(format_config(config)) == config
