"""Token metadata cache and account data summaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from solarb.pubkey import Pubkey

_KNOWN_TOKENS = {
    "So11111111111111111111111111111111111111112": ("SOL", "Solana", 9),
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": ("USDC", "USD Coin", 6),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": ("USDT", "Tether", 6),
}
_DEFAULT_DECIMALS = 6


@dataclass
class TokenMetadata:
    """Display information for a token mint."""

    mint: Pubkey
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None


def _lookup_metadata(mint: Pubkey) -> TokenMetadata:
    mint_str = str(mint)
    known = _KNOWN_TOKENS.get(mint_str)
    if known is not None:
        symbol, name, decimals = known
        return TokenMetadata(mint, symbol, name, decimals)
    symbol = f"{mint_str[:4]}.."
    return TokenMetadata(mint, symbol, f"Unknown Token ({symbol})", _DEFAULT_DECIMALS)


class TokenMetadataCache:
    """Caches token metadata so each mint is resolved once."""

    def __init__(self) -> None:
        self._cache: Dict[Pubkey, TokenMetadata] = {}

    async def get_metadata(self, mint: Pubkey, rpc_client: Any) -> TokenMetadata:
        """Metadata for ``mint``, resolved and cached on first use."""
        cached = self._cache.get(mint)
        if cached is not None:
            return cached
        metadata = _lookup_metadata(mint)
        self._cache[mint] = metadata
        return metadata

    async def update_metadata(self, metadata: TokenMetadata) -> None:
        """Add or replace the cached entry for ``metadata.mint``."""
        self._cache[metadata.mint] = metadata


def parse_account_data(account_type: str, data: bytes) -> Dict[str, Any]:
    """Summarise raw account data of a ``token`` or ``mint`` account."""
    if account_type not in ("token", "mint"):
        raise ValueError(f"Unsupported account type: {account_type}")
    return {"account_type": account_type, "data_length": len(data)}