from __future__ import annotations

"""Capability registry.

The registry maps a capability name to an executable implementation.

Loops never look capabilities up in the registry directly. A loop (or a
subagent) is built with a ``FrozenCapabilitySet`` resolved once from a list of
names, so the tools it can call are fixed for its whole lifetime even if the
registry changes afterwards.
"""

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Dict

from ..errors import UnknownCapability
from .base import Capability


class FrozenCapabilitySet(Mapping):
    """Immutable name -> capability mapping for one loop's lifetime."""

    def __init__(self, caps: Mapping[str, Capability]) -> None:
        self._caps = MappingProxyType(dict(caps))

    def __getitem__(self, name: str) -> Capability:
        return self._caps[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._caps)

    def __len__(self) -> int:
        return len(self._caps)

    def __repr__(self) -> str:
        return f"FrozenCapabilitySet({sorted(self._caps)})"

    def names(self) -> list[str]:
        return list(self._caps)


class CapabilityRegistry:
    """
    In-memory mapping of capability names to implementations.

    This registry is the central lookup mechanism for resolving capability
    names (e.g., ``execute_code``) to executable code.

    Notes:
        - ``register`` overwrites any existing mapping for the capability name.
        - ``get`` raises ``UnknownCapability`` if the capability is missing.
    """

    def __init__(self) -> None:
        """Initialize an empty capability registry."""
        self._caps: Dict[str, Capability] = {}

    def register(self, cap: Capability) -> None:
        """
        Register a capability implementation.

        Args:
            cap: The capability instance to register. It must expose a ``name`` attribute.
        """
        self._caps[cap.name] = cap

    def get(self, name: str) -> Capability:
        """
        Retrieve a registered capability by name.

        Raises:
            UnknownCapability: If no capability is registered with the given name.
        """
        try:
            return self._caps[name]
        except KeyError:
            raise UnknownCapability(name) from None

    def has(self, name: str) -> bool:
        return name in self._caps

    def names(self) -> list[str]:
        return sorted(self._caps)

    def resolve(self, names: Iterable[str]) -> FrozenCapabilitySet:
        """
        Resolve capability names into a closed set.

        Duplicates collapse; order of first appearance is kept.

        Raises:
            UnknownCapability: If any name is not registered. Nothing is resolved in that case.
        """
        resolved: Dict[str, Capability] = {}
        for name in names:
            if name not in resolved:
                resolved[name] = self.get(name)
        return FrozenCapabilitySet(resolved)
