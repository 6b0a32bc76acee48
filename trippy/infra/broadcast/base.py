"""Pub/sub transport behind the change feed."""

from __future__ import annotations

import abc
from typing import AsyncIterator


class Broadcast(abc.ABC):
    """Channel-based pub/sub carrying serialized change events."""

    @abc.abstractmethod
    async def publish(self, channel: str, message: str) -> None:
        """Deliver ``message`` to every current subscriber of ``channel``."""
        ...

    @abc.abstractmethod
    def subscribe(self, channel: str) -> AsyncIterator[str]:
        """
        Yield messages published to ``channel`` after subscription.

        The subscription is released when the consuming task is cancelled
        or the iterator is closed.
        """
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...
