"""
Enrolled fingerprint lookup.

The attendance portal keeps enrolled fingerprints in its own profile store;
the verification core only needs a read-only get(identity). The in-memory
implementation backs the HTTP API and the tests. It keeps nothing on disk.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from faceverify.fingerprint import Fingerprint

logger = logging.getLogger(__name__)


class EnrolledFingerprintStore(ABC):
    """Read-only lookup of enrolled fingerprints by identity."""

    @abstractmethod
    def get(self, identity: str) -> Optional[Fingerprint]:
        """Return the enrolled fingerprint, or None if the identity is unknown."""
        pass


class InMemoryFingerprintStore(EnrolledFingerprintStore):
    """Process-local store, filled by the host application."""

    def __init__(self, fingerprints: Optional[Dict[str, Fingerprint]] = None):
        self._lock = threading.Lock()
        self._fingerprints: Dict[str, Fingerprint] = dict(fingerprints or {})

    def get(self, identity: str) -> Optional[Fingerprint]:
        with self._lock:
            return self._fingerprints.get(identity)

    def put(self, identity: str, fingerprint: Fingerprint) -> None:
        with self._lock:
            self._fingerprints[identity] = fingerprint
        logger.info(f"Enrolled {fingerprint.strategy.value} fingerprint for {identity}")

    def remove(self, identity: str) -> bool:
        with self._lock:
            return self._fingerprints.pop(identity, None) is not None

    def identities(self) -> List[str]:
        with self._lock:
            return sorted(self._fingerprints)

    def __len__(self) -> int:
        with self._lock:
            return len(self._fingerprints)


# Store the singleton instance (module-level variable)
_store_instance: Optional[InMemoryFingerprintStore] = None


def get_fingerprint_store() -> InMemoryFingerprintStore:
    """Get the process-wide in-memory store."""
    global _store_instance

    if _store_instance is None:
        _store_instance = InMemoryFingerprintStore()

    return _store_instance
