"""Canonical name and tag set."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


@dataclass(frozen=True)
class Label:
    """Canonical identifier plus the shared tag map.

    Produced once by the naming authority and handed to every node by
    reference. ``tags`` is a read-only mapping.
    """

    id: str
    namespace: str
    name: str
    stage: str
    delimiter: str = "-"
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
