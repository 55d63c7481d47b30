from __future__ import annotations

from pathlib import Path

import pytest

from netrunner.config import AppConfig, MissingConfigError


def _write_yaml(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


# ---- 1) No file → defaults ----
def test_defaults_without_file() -> None:
    cfg = AppConfig.from_yaml()
    assert cfg.binary.command_name == "pop"
    assert cfg.binary.override_env == "POP_CLI_PATH"
    assert cfg.readiness.node_timeout_sec == 60
    assert cfg.readiness.network_timeout_sec == 300
    assert cfg.readiness.poll_interval_sec == pytest.approx(0.2)
    assert "could not launch" in cfg.readiness.fatal_markers
    assert cfg.paths.descriptor_name == "zombie.json"


# ---- 2) YAML values load ----
def test_yaml_values(tmp_path: Path) -> None:
    cfg = AppConfig.from_yaml(
        _write_yaml(
            tmp_path / "config.yaml",
            """\
binary:
  command_name: pop-dev
  search_dirs: [/opt/pop/bin]
readiness:
  node_timeout_sec: 15
  fatal_markers: [boom]
paths:
  descriptor_dir: /var/tmp/zn
""",
        )
    )
    assert cfg.binary.command_name == "pop-dev"
    assert cfg.binary.search_dirs == [Path("/opt/pop/bin")]
    assert cfg.readiness.node_timeout_sec == 15
    assert cfg.readiness.fatal_markers == ["boom"]
    assert cfg.paths.descriptor_dir == Path("/var/tmp/zn")
    # untouched sections keep defaults
    assert cfg.teardown.kill_timeout_sec == 2


# ---- 3) Config path from env ----
def test_config_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write_yaml(tmp_path / "elsewhere.yaml", "readiness:\n  network_timeout_sec: 42\n")
    monkeypatch.setenv("POP_NETRUNNER_CONFIG", str(path))
    assert AppConfig.from_yaml().readiness.network_timeout_sec == 42


# ---- 4) Flat env overlays win over YAML ----
def test_env_overlays(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write_yaml(tmp_path / "config.yaml", "readiness:\n  node_timeout_sec: 15\n")
    monkeypatch.setenv("POP_NETRUNNER_NODE_TIMEOUT", "7.5")
    monkeypatch.setenv("POP_NETRUNNER_NETWORK_TIMEOUT", "90")
    monkeypatch.setenv("POP_NETRUNNER_SCRATCH_DIR", str(tmp_path / "s"))
    monkeypatch.setenv("POP_NETRUNNER_DESCRIPTOR_DIR", str(tmp_path / "d"))
    monkeypatch.setenv("POP_NETRUNNER_STATE_FILE", str(tmp_path / "state.json"))
    cfg = AppConfig.from_yaml(path)
    assert cfg.readiness.node_timeout_sec == 7.5
    assert cfg.readiness.network_timeout_sec == 90
    assert cfg.paths.scratch_dir == tmp_path / "s"
    assert cfg.paths.descriptor_dir == tmp_path / "d"
    assert cfg.paths.state_file == tmp_path / "state.json"


# ---- 5) Empty env values are ignored ----
def test_empty_env_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POP_NETRUNNER_NODE_TIMEOUT", "")
    assert AppConfig.from_yaml().readiness.node_timeout_sec == 60


# ---- 6) Non-mapping YAML root raises ----
def test_non_mapping_yaml_raises(tmp_path: Path) -> None:
    path = _write_yaml(tmp_path / "config.yaml", "- just\n- a list\n")
    with pytest.raises(MissingConfigError) as ei:
        AppConfig.from_yaml(path)
    assert "mapping" in str(ei.value)
