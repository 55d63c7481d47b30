from __future__ import annotations

from pathlib import Path


def find_latest_descriptor(
    directory: Path,
    *,
    prefix: str = "zombie-",
    name: str = "zombie.json",
    newer_than: float | None = None,
) -> Path | None:
    """
    Newest `<directory>/<prefix>*/<name>` by directory mtime.

    `newer_than` (epoch seconds) skips descriptors left behind by earlier
    launches, so concurrent or stale networks are not picked up.
    """
    try:
        entries = list(directory.iterdir())
    except OSError:
        return None

    newest: tuple[float, Path] | None = None
    for entry in entries:
        if not entry.name.startswith(prefix):
            continue
        try:
            if not entry.is_dir():
                continue
            candidate = entry / name
            if not candidate.is_file():
                continue
            modified = max(entry.stat().st_mtime, candidate.stat().st_mtime)
        except OSError:
            # removed between listing and stat
            continue
        if newer_than is not None and modified < newer_than:
            continue
        if newest is None or modified > newest[0]:
            newest = (modified, candidate)
    return newest[1] if newest else None
