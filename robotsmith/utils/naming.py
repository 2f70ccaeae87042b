"""Identifier sanitization and per-namespace uniqueness for MJCF names."""

import logging
import re

from dataclasses import dataclass, field
from typing import Callable

console_logger = logging.getLogger(__name__)

_INVALID_CHARACTERS = re.compile(r"[^a-zA-Z0-9_]+")
_VALID_START = re.compile(r"^[A-Za-z_]")

WarningSink = Callable[[str], None]


def sanitize_name(raw, fallback: str = "unnamed") -> str:
    """Map an arbitrary name onto the MJCF identifier grammar.

    Runs of characters outside ``[a-zA-Z0-9_]`` collapse to a single underscore, an
    empty result becomes ``fallback`` and a leading digit gets an underscore prefix.

    Example:
        >>> sanitize_name("left arm/joint 1")
        'left_arm_joint_1'
        >>> sanitize_name("3dof")
        '_3dof'
    """
    base = "" if raw is None else str(raw).strip()
    name = _INVALID_CHARACTERS.sub("_", base)
    if not name:
        name = fallback
    if not _VALID_START.match(name):
        name = f"_{name}"
    return name


class NameRegistry:
    """Hands out unique sanitized identifiers within one namespace.

    The first claim of a sanitized base keeps it unchanged. Later claims append
    ``_1``, ``_2``, ... skipping suffixes already in use. Every rename is reported to
    the optional warning sink. Callers create one registry per independent namespace
    (e.g. links and joints of one compiled robot).
    """

    def __init__(
        self,
        fallback: str = "unnamed",
        warn: WarningSink | None = None,
        label: str = "name",
    ):
        self.fallback = fallback
        self.warn = warn
        self.label = label
        self._used: set[str] = set()
        self._counters: dict[str, int] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._used

    def claim(self, raw) -> str:
        base_raw = "" if raw is None else str(raw)
        base = sanitize_name(base_raw, self.fallback)
        if base not in self._used:
            self._used.add(base)
            if base != base_raw:
                self._report(
                    f"Renamed {self.label} '{base_raw}' to '{base}' for MJCF "
                    "compatibility."
                )
            return base

        index = self._counters.get(base, 1)
        candidate = f"{base}_{index}"
        while candidate in self._used:
            index += 1
            candidate = f"{base}_{index}"
        self._counters[base] = index + 1
        self._used.add(candidate)
        self._report(f"Duplicate {self.label} '{base_raw}' renamed to '{candidate}'.")
        return candidate

    def _report(self, message: str) -> None:
        if self.warn is not None:
            self.warn(message)
        else:
            console_logger.debug(message)


@dataclass
class NameMap:
    """Bidirectional mapping between authored names and engine identifiers."""

    links: dict[str, str] = field(default_factory=dict)
    """Authored link name -> engine body name."""
    joints: dict[str, str] = field(default_factory=dict)
    """Authored joint name -> engine joint name."""
    links_by_engine: dict[str, str] = field(default_factory=dict)
    joints_by_engine: dict[str, str] = field(default_factory=dict)

    def add_link(self, raw: str, engine_name: str) -> None:
        self.links[raw] = engine_name
        self.links_by_engine[engine_name] = raw

    def add_joint(self, raw: str, engine_name: str) -> None:
        self.joints[raw] = engine_name
        self.joints_by_engine[engine_name] = raw

    def update(self, other: "NameMap") -> None:
        """Union with ``other``; entries of ``other`` win on key collision."""
        self.links.update(other.links)
        self.joints.update(other.joints)
        self.links_by_engine.update(other.links_by_engine)
        self.joints_by_engine.update(other.joints_by_engine)

    def link_name_by_engine(self) -> dict[str, str]:
        """Engine body name -> authored link name, derived from ``links`` if needed."""
        if self.links_by_engine:
            return dict(self.links_by_engine)
        return {engine: raw for raw, engine in self.links.items()}

    def is_empty(self) -> bool:
        return not (self.links or self.joints)
