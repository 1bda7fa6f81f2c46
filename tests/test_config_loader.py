"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from provctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.manifest == Path("/etc/provctl/manifest.yml")
    assert config.logs_dir == Path("/var/log/provctl")
    assert config.templates_dir == Path("/etc/provctl/templates")
    assert config.paths.unit_dir == Path("/etc/systemd/system")
    assert config.paths.repos_dir == Path("/etc/yum.repos.d")
    assert config.paths.dconf_dir == Path("/etc/dconf/db")
    assert config.commands.firewall_cmd == "firewall-cmd"
    assert dict(config.vars) == {}


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "provctl.yml"
    cfg.write_text(
        "manifest: /srv/manifests/host.yml\n"
        "paths:\n"
        "  unit_dir: /run/systemd/system\n"
        "commands:\n"
        "  dnf: /usr/bin/dnf5\n"
        "vars:\n"
        "  retention_days: 30\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.manifest == Path("/srv/manifests/host.yml")
    assert config.paths.unit_dir == Path("/run/systemd/system")
    assert config.paths.repos_dir == Path("/etc/yum.repos.d")
    assert config.commands.dnf == "/usr/bin/dnf5"
    assert config.vars["retention_days"] == 30


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "provctl.yml"
    cfg.write_text("logs_dir: /var/log/from-file\nvars:\n  loki_version: 2.9.7\n")
    env = {
        "PROVCTL_LOGS_DIR": str(tmp_path / "logs"),
        "PROVCTL_PATHS__DCONF_DIR": str(tmp_path / "dconf"),
        "PROVCTL_VARS__LOKI_VERSION": "2.9.8",
        "PROVCTL_VARS__RETENTION_DAYS": "7",
        "PROVCTL_COMMANDS__CURL": "/opt/bin/curl",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.logs_dir == tmp_path / "logs"
    assert config.paths.dconf_dir == tmp_path / "dconf"
    assert config.vars["loki_version"] == "2.9.8"
    assert config.vars["retention_days"] == 7
    assert config.commands.curl == "/opt/bin/curl"


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("manifest: /opt/site.yml\n")

    config = load_config(env={"PROVCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.manifest == Path("/opt/site.yml")


def test_programmatic_overrides_win(tmp_path: Path) -> None:
    """Explicit overrides are applied after environment values."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"PROVCTL_MANIFEST": "/from/env.yml"},
        overrides={"manifest": "/from/override.yml"},
    )

    assert config.manifest == Path("/from/override.yml")


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """to_dict renders paths as strings."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    payload = config.to_dict()

    assert payload["paths"]["unit_dir"] == "/etc/systemd/system"
    assert payload["commands"]["systemctl"] == "systemctl"


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A non-mapping document raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_paths_key_raises(tmp_path: Path) -> None:
    """Extra path keys produce ConfigError for clarity."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("paths:\n  spool_dir: /var/spool\n")

    with pytest.raises(ConfigError, match="Unknown paths configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_command_key_raises(tmp_path: Path) -> None:
    """Only known external binaries can be configured."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("commands:\n  wget: /usr/bin/wget\n")

    with pytest.raises(ConfigError, match="Unknown commands configuration keys"):
        load_config(config_file=cfg, env={})


def test_empty_command_value_raises(tmp_path: Path) -> None:
    """Command binaries must be non-empty strings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("commands:\n  systemctl: ''\n")

    with pytest.raises(ConfigError, match="commands.systemctl"):
        load_config(config_file=cfg, env={})


def test_vars_must_be_mapping(tmp_path: Path) -> None:
    """A scalar vars section is rejected."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("vars: 3\n")

    with pytest.raises(ConfigError, match="vars"):
        load_config(config_file=cfg, env={})
