from __future__ import annotations

import contextlib
import fcntl
import json
import os
import time
from collections.abc import Iterator
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field

from netrunner.logger import get_logger
from netrunner.runner.control import LaunchKind, LaunchRequest, Ready


class LaunchRecord(BaseModel):
    """What is needed later to tear a launch down."""

    launch_id: str
    kind: LaunchKind
    target: str | None = None
    pids: list[int] = Field(default_factory=list)
    descriptor_path: Path | None = None
    base_dir: Path | None = None
    endpoints: list[str] = Field(default_factory=list)
    ports: list[int] = Field(default_factory=list)
    started_at: float = Field(default_factory=time.time)


class RegistryState(BaseModel):
    records: dict[str, LaunchRecord] = Field(default_factory=dict)


class LaunchRegistry:
    """
    Launches known to this process, optionally mirrored to a JSON file so a
    later invocation can tear down what an earlier one started.

    Every change re-reads the file under an exclusive lock and applies itself
    to what is on disk, so concurrent invocations sharing one state file do
    not drop each other's records. Dead pids are per process only: pid numbers
    get reused by the OS.
    """

    def __init__(self, state_file: Path | None = None) -> None:
        self._state_file = state_file
        self._records: dict[str, LaunchRecord] = {}
        self._dead: set[int] = set()
        self.logger = get_logger("registry")
        if state_file is not None:
            self.load()

    def record(self, outcome: Ready, request: LaunchRequest) -> LaunchRecord:
        topology = outcome.topology
        endpoints = [e.url for e in topology.endpoints]
        if topology.eth_rpc is not None:
            endpoints.append(topology.eth_rpc.url)
        record = LaunchRecord(
            launch_id=uuid4().hex[:12],
            kind=request.kind,
            target=request.target,
            pids=list(outcome.process_ids),
            descriptor_path=outcome.descriptor_path,
            base_dir=outcome.base_dir,
            endpoints=endpoints,
            ports=topology.ports,
        )
        # a freshly reported pid is alive, whatever the number meant before
        self._dead.difference_update(record.pids)
        with self._locked():
            self._records[record.launch_id] = record
            self._write()
        self.logger.info("registry.recorded", launch_id=record.launch_id, pids=record.pids)
        return record

    def get(self, launch_id: str) -> LaunchRecord | None:
        return self._records.get(launch_id)

    def records(self) -> list[LaunchRecord]:
        return sorted(self._records.values(), key=lambda r: r.started_at)

    def forget(self, launch_id: str) -> LaunchRecord | None:
        with self._locked():
            record = self._records.pop(launch_id, None)
            if record is not None:
                self._write()
        if record is not None:
            self.logger.info("registry.forgot", launch_id=launch_id)
        return record

    def find_by_path(self, path: Path) -> list[LaunchRecord]:
        resolved = path.resolve()
        return [
            r
            for r in self._records.values()
            if (r.base_dir is not None and r.base_dir.resolve() == resolved)
            or (r.descriptor_path is not None and r.descriptor_path.resolve() == resolved)
        ]

    def mark_dead(self, pid: int) -> None:
        self._dead.add(pid)

    def is_dead(self, pid: int) -> bool:
        return pid in self._dead

    # ---------- persistence ----------
    def load(self) -> None:
        """Replace the in-memory records with what the state file holds."""
        if self._state_file is None or not self._state_file.exists():
            return
        try:
            state = RegistryState.model_validate_json(self._state_file.read_text(encoding="utf-8"))
        except (ValueError, OSError) as exc:
            self.logger.warning("registry.load_failed", path=str(self._state_file), error=repr(exc))
            return
        self._records = dict(state.records)

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        """Exclusive lock on the state file's sidecar; reloads from disk on entry."""
        if self._state_file is None:
            yield
            return
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self._state_file.with_name(self._state_file.name + ".lock")
        with open(lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                self.load()
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _write(self) -> None:
        if self._state_file is None:
            return
        state = RegistryState(records=self._records)
        tmp = self._state_file.with_name(f"{self._state_file.name}.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(state.model_dump(mode="json"), indent=2), encoding="utf-8")
        os.replace(tmp, self._state_file)
