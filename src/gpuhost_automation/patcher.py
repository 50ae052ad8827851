from __future__ import annotations

import copy
import json
import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Any, Callable, Mapping

from .errors import ConfigIOError

logger = logging.getLogger(__name__)

Transform = Callable[[dict[str, Any]], dict[str, Any]]


def set_key(mapping: dict[str, Any], dotted_key: str, value: Any) -> None:
    """Assign ``value`` at ``a.b.c`` inside nested maps, creating levels as needed."""

    *parents, leaf = dotted_key.split(".")
    current = mapping
    for segment in parents:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[leaf] = value


def get_key(mapping: Mapping[str, Any], dotted_key: str, default: Any = None) -> Any:
    current: Any = mapping
    for segment in dotted_key.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return default
        current = current[segment]
    return current


def merge_settings(settings: Mapping[str, Any]) -> Transform:
    def transform(config: dict[str, Any]) -> dict[str, Any]:
        for key in sorted(settings):
            set_key(config, key, copy.deepcopy(settings[key]))
        return config

    return transform


def serialize(config: Mapping[str, Any]) -> str:
    return json.dumps(config, sort_keys=True, indent=4) + "\n"


def read_config(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text()
    except FileNotFoundError:
        return {}
    except OSError as exc:
        raise ConfigIOError(f"cannot read {path}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigIOError(f"cannot parse {path}: {exc}", diagnostic=text[:200]) from exc
    if not isinstance(data, dict):
        raise ConfigIOError(f"{path} does not contain a JSON object")
    return data


def has_settings(path: Path, settings: Mapping[str, Any]) -> bool:
    try:
        config = read_config(path)
    except ConfigIOError:
        return False
    missing = object()
    return all(get_key(config, key, missing) == value for key, value in settings.items())


def patch(path: Path, transform: Transform) -> bool:
    """Read-modify-write ``path`` atomically; return whether the content changed.

    The original file is untouched unless the final rename succeeds.
    """

    path = Path(path)
    current = read_config(path)
    updated = transform(copy.deepcopy(current))
    if not isinstance(updated, dict):
        raise ConfigIOError(f"transform for {path} did not return a mapping")
    content = serialize(updated)

    try:
        existing = path.read_text()
    except FileNotFoundError:
        existing = None
    except OSError as exc:
        raise ConfigIOError(f"cannot read {path}: {exc}") from exc
    if existing == content:
        logger.debug("config=%s unchanged", path)
        return False

    _atomic_write(path, content)
    logger.info("Updated %s", path)
    return True


def _atomic_write(path: Path, content: str) -> None:
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        with os.fdopen(fd, "w") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        mode = _existing_mode(path)
        os.chmod(tmp_name, 0o644 if mode is None else mode)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise ConfigIOError(f"cannot write {path}: {exc}") from exc
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug("Unable to remove temp file %s", tmp_name, exc_info=True)


def _existing_mode(path: Path):
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return None


class ConfigPatcher:
    """Binds :func:`patch` to one structured config file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def patch(self, transform: Transform) -> bool:
        return patch(self.path, transform)

    def apply_settings(self, settings: Mapping[str, Any]) -> bool:
        return patch(self.path, merge_settings(settings))

    def satisfied(self, settings: Mapping[str, Any]) -> bool:
        return has_settings(self.path, settings)
