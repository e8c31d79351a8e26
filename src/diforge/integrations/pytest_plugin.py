from __future__ import annotations

import pytest

from diforge._internal.builder import ContainerBuilder
from diforge._internal.lock_mode import LockMode


@pytest.fixture()
def diforge_lock_mode() -> LockMode:
    """Lock mode used by ``diforge_builder``. Override to test single-threaded setups."""
    return LockMode.THREAD


@pytest.fixture()
def diforge_builder(diforge_lock_mode: LockMode) -> ContainerBuilder:
    """Create a per-test container builder.

    The fixture is function-scoped, so definitions, compiler passes and
    providers are isolated between tests unless users override fixture scope
    explicitly.

    Returns:
        A new ``ContainerBuilder`` instance.

    """
    return ContainerBuilder(lock_mode=diforge_lock_mode)
