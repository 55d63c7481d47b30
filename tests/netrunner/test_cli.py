from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path

import pytest
from typer.testing import CliRunner

from netrunner.cli import app


WriteScript = Callable[[str, str], Path]

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "netrunner.yaml"
    path.write_text(
        f"""\
readiness:
  node_timeout_sec: 5
  settle_sec: 0.1
paths:
  scratch_dir: {tmp_path / "scratch"}
  descriptor_dir: {tmp_path / "descriptors"}
  state_file: {tmp_path / "state.json"}
""",
        encoding="utf-8",
    )
    return path


# ---- 1) which honours the override env ----
def test_which(
    write_script: WriteScript, monkeypatch: pytest.MonkeyPatch, config_file: Path
) -> None:
    script = write_script("pop", "exit 0\n")
    monkeypatch.setenv("POP_CLI_PATH", str(script))
    result = runner.invoke(app, ["which", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert result.output.strip() == str(script)


# ---- 2) up-node → ls → down round trip through the state file ----
def test_up_node_ls_down(
    write_script: WriteScript, monkeypatch: pytest.MonkeyPatch, config_file: Path
) -> None:
    script = write_script(
        "pop",
        'echo "│  url: ws://localhost:9944/"\necho "✅ Ink! node bootstrapped successfully."\n',
    )
    monkeypatch.setenv("POP_CLI_PATH", str(script))

    up = runner.invoke(app, ["up-node", "--config", str(config_file)])
    assert up.exit_code == 0, up.output
    assert "relay_ws: ws://localhost:9944" in up.output
    match = re.search(r"launch_id: (\w+)", up.output)
    assert match is not None
    launch_id = match.group(1)

    listed = runner.invoke(app, ["ls", "--config", str(config_file)])
    assert listed.exit_code == 0, listed.output
    assert launch_id in listed.output
    assert "ws://localhost:9944" in listed.output

    down = runner.invoke(
        app, ["down", "--id", launch_id, "--no-wait-ports", "--config", str(config_file)]
    )
    assert down.exit_code == 0, down.output

    listed = runner.invoke(app, ["ls", "--config", str(config_file)])
    assert launch_id not in listed.output


# ---- 3) Failed launch → exit code 1 with the captured output ----
def test_up_node_failure(
    write_script: WriteScript, monkeypatch: pytest.MonkeyPatch, config_file: Path
) -> None:
    script = write_script("pop", 'echo "Could not launch local network"\nexit 1\n')
    monkeypatch.setenv("POP_CLI_PATH", str(script))
    result = runner.invoke(app, ["up-node", "--config", str(config_file)])
    assert result.exit_code == 1
    assert "error:" in result.output
    assert "Could not launch" in result.output


# ---- 4) down by path that no longer exists ----
def test_down_missing_path(tmp_path: Path, config_file: Path) -> None:
    result = runner.invoke(
        app, ["down", "--path", str(tmp_path / "zombie-gone"), "--config", str(config_file)]
    )
    assert result.exit_code == 0, result.output
    assert "already torn down" in result.output


# ---- 5) down needs a target ----
def test_down_without_target(config_file: Path) -> None:
    result = runner.invoke(app, ["down", "--config", str(config_file)])
    assert result.exit_code != 0


# ---- 6) clean failure is reported with exit code 1 ----
def test_down_all_failure(
    write_script: WriteScript, monkeypatch: pytest.MonkeyPatch, config_file: Path
) -> None:
    script = write_script("pop", 'echo "no networks" >&2\nexit 1\n')
    monkeypatch.setenv("POP_CLI_PATH", str(script))
    result = runner.invoke(app, ["down", "--all", "--config", str(config_file)])
    assert result.exit_code == 1
    assert "no networks" in result.output
