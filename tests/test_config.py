"""Tests for configuration parsing and formatting."""

from pathlib import Path

import hypothesis.strategies as st
import pytest
from hypothesis import given

from rotbackup.config import (
    Configuration,
    ConfigurationError,
    LoggingConfig,
    RemoteConfig,
    ReportConfig,
    RetentionConfig,
    ValidationError,
    create_default_config,
    format_config,
    parse_config,
    parse_config_string,
)
from rotbackup.naming import Tier


MINIMAL_CONFIG = '''
[main]
target = "/mnt/backup"
sources = ["/home/user/docs"]
'''


# Path-like strings without characters TOML basic strings cannot carry raw
path_segment = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N"),
        whitelist_characters="-_. \"\\",
    ),
    min_size=1,
    max_size=20,
)
absolute_path = path_segment.map(lambda s: "/" + s)
option = st.text(
    alphabet=st.characters(whitelist_categories=("L", "N"), whitelist_characters="-=_"),
    min_size=1,
    max_size=15,
)


@st.composite
def configurations(draw):
    """Generate valid Configuration instances."""
    log_file = draw(st.one_of(st.none(), absolute_path.map(Path)))
    return Configuration(
        target=draw(absolute_path),
        sources=draw(st.lists(absolute_path, min_size=1, max_size=4)),
        profile_name=draw(path_segment),
        rsync_options=draw(st.lists(option, max_size=3)),
        remote=RemoteConfig(
            host=draw(st.sampled_from(["", "backup.example.org"])),
            user=draw(st.sampled_from(["", "bak"])),
            port=draw(st.integers(min_value=1, max_value=65535)),
            ssh_options=draw(st.lists(option, max_size=3)),
        ),
        retention=RetentionConfig(
            main=draw(st.integers(min_value=0, max_value=100)),
            daily=draw(st.integers(min_value=0, max_value=100)),
            weekly=draw(st.integers(min_value=0, max_value=100)),
            monthly=draw(st.integers(min_value=0, max_value=100)),
        ),
        logging=LoggingConfig(
            level=draw(st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR"])),
            log_file=log_file,
            log_max_size_mb=draw(st.integers(min_value=1, max_value=100)),
            log_backup_count=draw(st.integers(min_value=0, max_value=20)),
        ),
        report=ReportConfig(
            recipients=draw(st.lists(st.sampled_from(["a@example.org", "b@example.org"]), max_size=2)),
            sender=draw(st.sampled_from(["", "backup@example.org"])),
            smtp_host=draw(st.sampled_from(["", "smtp.example.org"])),
            smtp_port=draw(st.integers(min_value=0, max_value=65535)),
            smtp_username=draw(path_segment),
            smtp_password=draw(path_segment),
            smtp_insecure=draw(st.booleans()),
        ),
    )


class TestRoundTrip:
    """format_config output parses back into the same configuration."""

    @given(config=configurations())
    def test_round_trip_preserves_configuration(self, config: Configuration):
        assert parse_config_string(format_config(config)) == config


class TestParseConfigString:
    """Tests for parse_config_string."""

    def test_minimal_uses_defaults(self):
        config = parse_config_string(MINIMAL_CONFIG)

        assert config.target == "/mnt/backup"
        assert config.sources == ["/home/user/docs"]
        assert not config.is_remote
        assert config.remote.port == 22
        policy = config.retention.to_policy()
        assert [policy.capacity_for(t) for t in Tier] == [1, 7, 52, 12]
        assert config.report.recipients == []
        assert not config.report.is_complete

    def test_root_level_keys(self):
        """Main keys may also sit at the top level of the file."""
        config = parse_config_string('target = "/t"\nsources = ["/s"]\n')
        assert config.target == "/t"

    def test_full(self):
        config = parse_config_string(MINIMAL_CONFIG + '''
rsync_options = ["--exclude", ".cache"]
profile_name = "laptop"

[remote]
host = "nas"
user = "bak"
port = 2222
ssh_options = ["-i", "/root/.ssh/backup"]

[retention]
main = 2
daily = 0

[report]
recipients = ["me@example.org"]
smtp_host = "smtp.example.org"
smtp_port = 587
smtp_insecure = true
''')
        assert config.profile_name == "laptop"
        assert config.rsync_options == ["--exclude", ".cache"]
        assert config.is_remote
        assert config.remote.ssh_options == ["-i", "/root/.ssh/backup"]
        assert config.retention.main == 2
        assert config.retention.daily == 0
        assert config.retention.weekly == 52
        assert config.report.is_complete
        assert config.report.smtp_insecure

    @pytest.mark.parametrize("key", ["target", "sources"])
    def test_missing_required_key(self, key):
        lines = [line for line in MINIMAL_CONFIG.splitlines() if not line.startswith(key)]
        with pytest.raises(ConfigurationError):
            parse_config_string("\n".join(lines))

    def test_invalid_toml(self):
        with pytest.raises(ConfigurationError):
            parse_config_string("[main\ntarget = ")

    def test_relative_source_rejected(self):
        with pytest.raises(ValidationError):
            parse_config_string('[main]\ntarget = "/t"\nsources = ["docs"]\n')

    def test_empty_sources_rejected(self):
        with pytest.raises(ValidationError):
            parse_config_string('[main]\ntarget = "/t"\nsources = []\n')

    def test_empty_target_rejected(self):
        with pytest.raises(ValidationError):
            parse_config_string('[main]\ntarget = " "\nsources = ["/s"]\n')

    @pytest.mark.parametrize("snippet", [
        '[retention]\ndaily = -1',
        '[retention]\nweekly = "4"',
        '[retention]\nmonthly = true',
        '[remote]\nport = 0',
        '[remote]\nssh_options = "-v"',
        '[report]\nsmtp_insecure = "yes"',
        '[logging]\nlevel = 10',
    ])
    def test_invalid_values(self, snippet):
        with pytest.raises(ValidationError):
            parse_config_string(MINIMAL_CONFIG + "\n" + snippet + "\n")

    def test_empty_log_file_disables_file_logging(self):
        config = parse_config_string(MINIMAL_CONFIG + '\n[logging]\nlog_file = ""\n')
        assert config.logging.log_file is None


class TestParseConfig:
    """Tests for parse_config with files."""

    def test_reads_file(self, tmp_path: Path):
        path = tmp_path / "config.toml"
        path.write_text(MINIMAL_CONFIG)
        assert parse_config(path).target == "/mnt/backup"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError):
            parse_config(tmp_path / "missing.toml")


class TestDefaultConfig:
    """Tests for create_default_config."""

    def test_default_config_parses(self):
        config = parse_config_string(create_default_config())
        assert config.profile_name == "default"
        assert config.retention == RetentionConfig()
        assert not config.is_remote
