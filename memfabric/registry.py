"""
Backend registry.

Holds the configured adapters together with their descriptors (role,
priority, reconciliation interval, sync checkpoint). Iteration order is
(priority, name) so every component sees backends in the same order.
"""

import threading
from typing import Dict, Iterator, List, Optional, Tuple

from .backends.base import BackendAdapter
from .core.schemas import BackendDescriptor
from .errors import InvalidRequestError


class BackendRegistry:
    """Name -> (descriptor, adapter) bookkeeping."""

    def __init__(self):
        self._entries: Dict[str, Tuple[BackendDescriptor, BackendAdapter]] = {}
        self._lock = threading.Lock()

    def register(self, descriptor: BackendDescriptor, adapter: BackendAdapter) -> None:
        """
        Add a backend.

        Raises:
            InvalidRequestError: duplicate name or adapter/descriptor name mismatch
        """
        if adapter.name != descriptor.name:
            raise InvalidRequestError(
                f"adapter name {adapter.name!r} does not match descriptor name {descriptor.name!r}"
            )
        with self._lock:
            if descriptor.name in self._entries:
                raise InvalidRequestError(f"backend {descriptor.name!r} already registered")
            self._entries[descriptor.name] = (descriptor, adapter)

    def deregister(self, name: str) -> BackendAdapter:
        """
        Remove a backend and return its adapter (the caller disconnects it).

        Raises:
            KeyError: unknown backend
        """
        with self._lock:
            _, adapter = self._entries.pop(name)
        return adapter

    def get(self, name: str) -> Optional[BackendAdapter]:
        entry = self._entries.get(name)
        return entry[1] if entry else None

    def descriptor(self, name: str) -> Optional[BackendDescriptor]:
        entry = self._entries.get(name)
        return entry[0] if entry else None

    def _ordered(self) -> List[Tuple[BackendDescriptor, BackendAdapter]]:
        return sorted(self._entries.values(), key=lambda e: (e[0].priority, e[0].name))

    def descriptors(self) -> List[BackendDescriptor]:
        return [d for d, _ in self._ordered()]

    def adapters(self) -> List[BackendAdapter]:
        return [a for _, a in self._ordered()]

    def items(self) -> List[Tuple[BackendDescriptor, BackendAdapter]]:
        return self._ordered()

    def names(self) -> List[str]:
        return [d.name for d, _ in self._ordered()]

    def priorities(self) -> Dict[str, int]:
        return {name: d.priority for name, (d, _) in list(self._entries.items())}

    def peers_of(self, name: str) -> List[BackendAdapter]:
        """Every adapter except `name`."""
        return [a for d, a in self._ordered() if d.name != name]

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[BackendDescriptor]:
        return iter(self.descriptors())
