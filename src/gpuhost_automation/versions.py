from __future__ import annotations

import functools
import re
from typing import Optional

from .errors import MalformedVersion

_VERSION_RE = re.compile(r"^\d+(?:\.\d+)*$")
_CUDA_RE = re.compile(r"CUDA Version:\s*([^\s|]+)")


@functools.total_ordering
class Version:
    """Numeric dotted version; missing trailing components compare as zero."""

    __slots__ = ("components",)

    def __init__(self, components: tuple[int, ...]):
        if not components:
            raise MalformedVersion("")
        self.components = tuple(int(part) for part in components)

    def _key(self) -> tuple[int, ...]:
        parts = list(self.components)
        while len(parts) > 1 and parts[-1] == 0:
            parts.pop()
        return tuple(parts)

    def _padded(self, other: "Version") -> tuple[tuple[int, ...], tuple[int, ...]]:
        width = max(len(self.components), len(other.components))
        left = self.components + (0,) * (width - len(self.components))
        right = other.components + (0,) * (width - len(other.components))
        return left, right

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        left, right = self._padded(other)
        return left == right

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        left, right = self._padded(other)
        return left < right

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return ".".join(str(part) for part in self.components)

    def __repr__(self) -> str:
        return f"Version('{self}')"


def parse_version(text: object) -> Version:
    if not isinstance(text, str):
        raise MalformedVersion(text)
    stripped = text.strip()
    if not _VERSION_RE.match(stripped):
        raise MalformedVersion(text)
    return Version(tuple(int(part) for part in stripped.split(".")))


def meets(version: Version, minimum: Version) -> bool:
    return version >= minimum


def extract_cuda_version(output: str) -> Optional[str]:
    """Return the raw token after ``CUDA Version:`` in nvidia-smi output.

    ``N/A`` (driver loaded without CUDA support) is reported as ``None``.
    """

    match = _CUDA_RE.search(output or "")
    if not match:
        return None
    token = match.group(1)
    if token.lower() == "n/a":
        return None
    return token
