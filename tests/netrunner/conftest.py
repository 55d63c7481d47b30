from __future__ import annotations

import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from netrunner.config import AppConfig


ENV_KEYS = [
    "POP_CLI_PATH",
    "POP_NETRUNNER_CONFIG",
    "POP_NETRUNNER_SCRATCH_DIR",
    "POP_NETRUNNER_DESCRIPTOR_DIR",
    "POP_NETRUNNER_STATE_FILE",
    "POP_NETRUNNER_NODE_TIMEOUT",
    "POP_NETRUNNER_NETWORK_TIMEOUT",
]


# ---- Env cleanup ----
@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for k in ENV_KEYS:
        monkeypatch.delenv(k, raising=False)
    # keep ./pop-netrunner.yaml of the developer out of the picture
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable /bin/sh script standing in for the external program."""

    def _write(name: str, body: str) -> Path:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Fast budgets and private scratch/descriptor dirs."""
    scratch = tmp_path / "scratch"
    descriptors = tmp_path / "descriptors"
    scratch.mkdir()
    descriptors.mkdir()
    cfg = AppConfig.model_validate(
        {
            "readiness": {
                "node_timeout_sec": 5.0,
                "network_timeout_sec": 5.0,
                "poll_interval_sec": 0.05,
                "settle_sec": 0.2,
            },
            "teardown": {
                "kill_timeout_sec": 2.0,
                "clean_timeout_sec": 10.0,
                "port_release_timeout_sec": 3.0,
                "port_poll_interval_sec": 0.05,
            },
            "paths": {
                "scratch_dir": str(scratch),
                "descriptor_dir": str(descriptors),
                "state_file": str(tmp_path / "state.json"),
            },
        }
    )
    return cfg

