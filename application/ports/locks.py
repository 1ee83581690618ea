"""
Keyed lock port - mutual exclusion scoped to a string key
"""
from __future__ import annotations

from typing import AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class KeyedLock(Protocol):
    """``async with locks.hold("payment:123"): ...``

    Implementations block until the key is free and raise TimeoutError when
    they give up waiting. With ``wait=False`` a held key fails at once.
    """

    def hold(self, key: str, *, wait: bool = True) -> AsyncContextManager[None]: ...

    async def aclose(self) -> None: ...
