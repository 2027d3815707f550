"""Interface for asynchronous price sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class CryptoDataProvider(ABC):
    """Anything that can report a price for a symbol."""

    @abstractmethod
    async def get_price(self, symbol: str) -> Optional[float]:
        """The price of ``symbol``, or None when it is unavailable."""