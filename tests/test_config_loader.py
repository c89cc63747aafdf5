"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from vhostctl.config import AppConfig, ConfigError, load_config
from vhostctl.models import BackendKind


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.backend is BackendKind.NGINX
    assert config.default_php == "8.2"
    assert config.registry_dir == Path("/var/lib/vhostctl/registry")
    assert config.templates_dir == Path("/etc/vhostctl/templates")
    assert config.paths.is_set is False
    assert config.commands.apachectl_bin == "apache2ctl"
    assert config.tls.warn_expiry_days == 30
    assert config.tls.email is None


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "vhostctl.yml"
    cfg.write_text(
        "backend: apache\n"
        "default_php: '8.3'\n"
        "paths:\n"
        "  available: {available}\n"
        "  enabled: {enabled}\n"
        "tls:\n"
        "  email: ops@example.com\n"
        "  warn_expiry_days: 14\n"
    )
    cfg.write_text(
        cfg.read_text().format(
            available=str(tmp_path / "sites-available"),
            enabled=str(tmp_path / "sites-enabled"),
        )
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.backend is BackendKind.APACHE
    assert config.default_php == "8.3"
    assert config.paths.available == tmp_path / "sites-available"
    assert config.paths.enabled == tmp_path / "sites-enabled"
    assert config.paths.is_set is True
    assert config.tls.email == "ops@example.com"
    assert config.tls.warn_expiry_days == 14


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("backend: apache\n")
    state_dir = tmp_path / "state"
    env = {
        "VHOSTCTL_BACKEND": "caddy",
        "VHOSTCTL_STATE_DIR": str(state_dir),
        "VHOSTCTL_TEMPLATES_DIR": str(tmp_path / "templates"),
        "VHOSTCTL_COMMANDS__CADDYFILE": str(tmp_path / "Caddyfile"),
        "VHOSTCTL_TLS__WARN_EXPIRY_DAYS": "7",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.backend is BackendKind.CADDY
    assert config.state_dir == state_dir
    assert config.registry_dir == state_dir / "registry"
    assert config.templates_dir == tmp_path / "templates"
    assert config.commands.caddyfile == tmp_path / "Caddyfile"
    assert config.tls.warn_expiry_days == 7


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("default_php: '7.4'\n")

    config = load_config(env={"VHOSTCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.default_php == "7.4"


def test_explicit_overrides_win(tmp_path: Path) -> None:
    """Programmatic overrides beat the environment."""
    config = load_config(
        config_file=tmp_path / "absent.yml",
        env={"VHOSTCTL_BACKEND": "apache"},
        overrides={"backend": "nginx"},
    )

    assert config.backend is BackendKind.NGINX


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


def test_unknown_tls_nested_keys_raise(tmp_path: Path) -> None:
    """Extra TLS keys produce ConfigError for clarity."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "tls:\n"
        "  email: ops@example.com\n"
        "  extra: true\n"
    )

    with pytest.raises(ConfigError, match="Unknown tls configuration keys"):
        load_config(config_file=cfg, env={})


def test_unsupported_backend_raises(tmp_path: Path) -> None:
    """Only nginx, apache and caddy are accepted."""
    with pytest.raises(ConfigError, match="Unsupported backend 'lighttpd'"):
        load_config(config_file=tmp_path / "absent.yml", env={"VHOSTCTL_BACKEND": "lighttpd"})


def test_partial_paths_raise(tmp_path: Path) -> None:
    """Setting only one of the two directories is rejected."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(f"paths:\n  available: {tmp_path / 'sites-available'}\n")

    with pytest.raises(ConfigError, match="both paths.available and paths.enabled"):
        load_config(config_file=cfg, env={})


def test_relative_paths_raise(tmp_path: Path) -> None:
    """Configured directories must be absolute."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("paths:\n  available: sites-available\n  enabled: sites-enabled\n")

    with pytest.raises(ConfigError, match="must be an absolute path"):
        load_config(config_file=cfg, env={})


def test_negative_warn_days_raise(tmp_path: Path) -> None:
    """Expiry warnings need a non-negative horizon."""
    with pytest.raises(ConfigError, match="non-negative"):
        load_config(
            config_file=tmp_path / "absent.yml",
            env={"VHOSTCTL_TLS__WARN_EXPIRY_DAYS": "-1"},
        )


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """The config renders to plain strings for ``config show``."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    payload = config.to_dict()

    assert payload["backend"] == "nginx"
    assert payload["paths"] == {"available": None, "enabled": None}
    assert payload["config_file"] == str(tmp_path / "absent.yml")
