from __future__ import annotations

import os
import tempfile
from functools import cache
from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MissingConfigError(RuntimeError):
    """Raised when a config file exists but cannot be used."""


def _default_tmp() -> Path:
    return Path(tempfile.gettempdir())


class BinarySettings(BaseModel):
    command_name: str = Field(default="pop")
    # env variable holding an explicit path to the binary
    override_env: str = Field(default="POP_CLI_PATH")
    search_dirs: list[Path] = Field(
        default_factory=lambda: [
            Path("~/.cargo/bin"),
            Path("/opt/homebrew/bin"),
            Path("/home/linuxbrew/.linuxbrew/bin"),
            Path("/usr/local/bin"),
        ]
    )


class ReadinessSettings(BaseModel):
    """Budgets and recognised output fragments."""

    node_timeout_sec: float = Field(default=60.0)
    network_timeout_sec: float = Field(default=300.0)
    poll_interval_sec: float = Field(default=0.2)
    # keep draining after ready so the trailing summary (pids) is captured
    settle_sec: float = Field(default=2.0)
    ready_markers: list[str] = Field(
        default_factory=lambda: ["launched successfully", "bootstrapped successfully"]
    )
    fatal_markers: list[str] = Field(default_factory=lambda: ["could not launch"])
    max_line_len: int = Field(default=4000)


class TeardownSettings(BaseModel):
    kill_timeout_sec: float = Field(default=2.0)
    clean_timeout_sec: float = Field(default=60.0)
    port_release_timeout_sec: float = Field(default=30.0)
    port_poll_interval_sec: float = Field(default=0.2)
    probe_timeout_sec: float = Field(default=0.2)


class Paths(BaseModel):
    scratch_dir: Path = Field(default_factory=_default_tmp)
    descriptor_dir: Path = Field(default_factory=_default_tmp)
    descriptor_prefix: str = Field(default="zombie-")
    descriptor_name: str = Field(default="zombie.json")
    state_file: Path = Field(default_factory=lambda: _default_tmp() / "pop-netrunner-state.json")


class AppConfig(BaseSettings):
    """
    Launcher settings.

    Source of truth:
      1) YAML file (structured config)
      2) flat POP_NETRUNNER_* env overrides merged explicitly in from_yaml().
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    binary: BinarySettings = Field(default_factory=BinarySettings)
    readiness: ReadinessSettings = Field(default_factory=ReadinessSettings)
    teardown: TeardownSettings = Field(default_factory=TeardownSettings)
    paths: Paths = Field(default_factory=Paths)

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> AppConfig:
        """
        Load config from YAML, then overlay flat env values.
        Search order if path is not provided:
          $POP_NETRUNNER_CONFIG
          ./pop-netrunner.yaml
          ~/.config/pop-netrunner/config.yaml
        """
        candidates: list[Path] = []
        if path is not None:
            candidates.append(path)
        else:
            env_path = os.getenv("POP_NETRUNNER_CONFIG")
            if env_path:
                candidates.append(Path(env_path))
            candidates.extend(
                [
                    Path("pop-netrunner.yaml"),
                    Path("~/.config/pop-netrunner/config.yaml").expanduser(),
                ]
            )

        raw: dict[str, object] = {}
        for p in candidates:
            if p.exists():
                loaded = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
                if not isinstance(loaded, dict):
                    raise MissingConfigError(f"YAML at {p} must define a mapping at the root")
                raw = loaded
                break

        cfg = cls.model_validate(raw)

        def _get_env(*names: str) -> str | None:
            for n in names:
                v = os.getenv(n)
                if v is not None and v != "":
                    return v
            return None

        scratch = _get_env("POP_NETRUNNER_SCRATCH_DIR")
        if scratch is not None:
            cfg.paths.scratch_dir = Path(scratch)

        descriptor_dir = _get_env("POP_NETRUNNER_DESCRIPTOR_DIR")
        if descriptor_dir is not None:
            cfg.paths.descriptor_dir = Path(descriptor_dir)

        state_file = _get_env("POP_NETRUNNER_STATE_FILE")
        if state_file is not None:
            cfg.paths.state_file = Path(state_file)

        node_timeout = _get_env("POP_NETRUNNER_NODE_TIMEOUT")
        if node_timeout is not None:
            cfg.readiness.node_timeout_sec = float(node_timeout)

        network_timeout = _get_env("POP_NETRUNNER_NETWORK_TIMEOUT")
        if network_timeout is not None:
            cfg.readiness.network_timeout_sec = float(network_timeout)

        return cfg


@cache
def get_settings() -> AppConfig:
    return AppConfig.from_yaml()


__all__ = [
    "AppConfig",
    "BinarySettings",
    "MissingConfigError",
    "Paths",
    "ReadinessSettings",
    "TeardownSettings",
    "get_settings",
]
