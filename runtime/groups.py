"""Method group registry — static group tag → primitive name mapping."""

from __future__ import annotations

from typing import Iterable, Mapping

# Built-in groups, used when the manifest does not define a mapping.
DEFAULT_MAPPING: dict[str, list[str]] = {
    "ev": ["addEventListener", "removeEventListener", "dispatchEvent", "CustomEvent"],
    "dm": ["createElement", "appendChild", "querySelector", "innerHTML"],
    "tm": ["setInterval", "setTimeout", "requestAnimationFrame"],
    "cn": ["log", "warn", "error", "info", "clear"],
    "nt": ["fetch", "XMLHttpRequest", "localStorage", "indexedDB"],
    "st": ["sys.stat"],
    "nv": ["userAgent", "geolocation"],
    "md": ["getUserMedia", "enumerateDevices", "gatekit.log.stream"],
}


class MethodGroupRegistry:
    """Read-only lookup in both directions between groups and primitives.

    A primitive may belong to any number of groups, including none.
    """

    def __init__(self, mapping: Mapping[str, Iterable[str]] | None = None) -> None:
        if mapping is None:
            mapping = DEFAULT_MAPPING
        self._methods: dict[str, frozenset[str]] = {
            tag: frozenset(methods) for tag, methods in mapping.items()
        }
        reverse: dict[str, set[str]] = {}
        for tag, methods in self._methods.items():
            for method in methods:
                reverse.setdefault(method, set()).add(tag)
        self._groups: dict[str, frozenset[str]] = {
            method: frozenset(tags) for method, tags in reverse.items()
        }

    def groups_for(self, method: str) -> frozenset[str]:
        return self._groups.get(method, frozenset())

    def methods_in(self, group: str) -> frozenset[str]:
        return self._methods.get(group, frozenset())

    def classify(self, method: str) -> frozenset[str]:
        """The method name together with every group it belongs to."""
        return self.groups_for(method) | {method}

    def tags(self) -> list[str]:
        return sorted(self._methods)

    def as_dict(self) -> dict[str, list[str]]:
        return {tag: sorted(self._methods[tag]) for tag in self.tags()}

    def __contains__(self, group: object) -> bool:
        return group in self._methods

    def __len__(self) -> int:
        return len(self._methods)
