from __future__ import annotations

from enum import Enum


class LockMode(Enum):
    """Select locking behavior for shared-instance memoization.

    Pass one of these values as ``ContainerBuilder(lock_mode=...)``. The mode
    is baked into the compiled container.
    """

    THREAD = "thread"
    """Guard each shared service with a ``threading.RLock`` so concurrent first
    requests construct exactly one instance."""

    NONE = "none"
    """Disable locking. Only safe when the container is used from one thread."""
