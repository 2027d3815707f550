"""Pool data types, keypair loading, logging setup and swap arithmetic."""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Dict, Optional, Sequence, Tuple

from solarb.pubkey import Keypair, Pubkey, read_keypair_file

logger = logging.getLogger(__name__)

_HANDLER_NAME = "solarb-console"
_LOG_FORMAT = "[%(levelname)s][%(name)s] %(message)s"
_QUIET_LOGGERS = ("solana_rbpf", "solana_runtime.message_processor")


@dataclass(frozen=True)
class DexType:
    """The exchange a pool belongs to; any other name marks an unknown exchange."""

    name: str

    ORCA: ClassVar["DexType"]
    RAYDIUM: ClassVar["DexType"]
    LIFINITY: ClassVar["DexType"]
    METEORA: ClassVar["DexType"]
    PHOENIX: ClassVar["DexType"]
    WHIRLPOOL: ClassVar["DexType"]


DexType.ORCA = DexType("Orca")
DexType.RAYDIUM = DexType("Raydium")
DexType.LIFINITY = DexType("Lifinity")
DexType.METEORA = DexType("Meteora")
DexType.PHOENIX = DexType("Phoenix")
DexType.WHIRLPOOL = DexType("Whirlpool")

# Rebate rates in basis points of the traded amount, per exchange.
# No exchange currently pays a rebate.
_REBATE_BPS: Dict[DexType, float] = {}


@dataclass
class PoolToken:
    """One side of a liquidity pool."""

    mint: Pubkey
    symbol: str
    decimals: int
    reserve: int


@dataclass
class PoolInfo:
    """A two-token liquidity pool."""

    address: Pubkey
    name: str
    token_a: PoolToken
    token_b: PoolToken
    fee_numerator: int
    fee_denominator: int
    last_update_timestamp: int
    dex_type: DexType


@dataclass
class ProgramConfig:
    """Program configuration; holds no settings yet."""


@dataclass(frozen=True)
class TokenAmount:
    """An integer token amount with its decimal scale."""

    amount: int
    decimals: int

    def to_float(self) -> float:
        """The amount in whole tokens."""
        return self.amount / 10.0 ** self.decimals


class PoolParser(ABC):
    """Decodes a DEX program's pool accounts."""

    @classmethod
    @abstractmethod
    def parse_pool_data(cls, address: Pubkey, data: bytes) -> PoolInfo:
        """Decode raw account data into a pool."""

    @classmethod
    @abstractmethod
    def get_program_id(cls) -> Pubkey:
        """The program that owns the pools this parser reads."""

    @classmethod
    @abstractmethod
    def get_dex_type(cls) -> DexType:
        """The exchange this parser belongs to."""


def setup_logging() -> None:
    """Send INFO and above to stdout as "[LEVEL][target] message"."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(logging.INFO)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logger.info("Logging initialized.")


def load_keypair(path: str) -> Keypair:
    """Load a keypair file, logging the outcome."""
    try:
        keypair = read_keypair_file(path)
    except (OSError, ValueError) as exc:
        logger.error("Failed to load keypair from path '%s': %s", path, exc)
        raise
    logger.info("Successfully loaded keypair from: %s", path)
    return keypair


def calculate_multihop_profit_and_slippage(
    pools: Sequence[PoolInfo],
    input_amount: float,
    directions: Sequence[bool],
    last_fee_data: Sequence[Tuple[Optional[int], Optional[int], Optional[int]]],
) -> Tuple[float, float, float]:
    """Profit, slippage and fee for a route.

    Raises ValueError when there is not one direction per pool. No pricing
    model is applied, so profit, slippage and fee are all zero.
    """
    if len(directions) != len(pools):
        raise ValueError(
            f"route has {len(pools)} pools but {len(directions)} directions"
        )
    profit = slippage = fee = 0.0
    return (profit, slippage, fee)


def calculate_rebate(pools: Sequence[PoolInfo], amounts: Sequence[TokenAmount]) -> float:
    """Rebate earned along a route, from each pool's exchange rebate rate."""
    return sum(
        (
            _REBATE_BPS.get(pool.dex_type, 0.0) * amount.to_float() / 10_000.0
            for pool, amount in zip(pools, amounts)
        ),
        0.0,
    )


def calculate_output_amount(
    pool: PoolInfo, input_amount: TokenAmount, is_a_to_b: bool
) -> TokenAmount:
    """Constant-product output for swapping ``input_amount`` through ``pool``."""
    if is_a_to_b:
        source, target = pool.token_a, pool.token_b
    else:
        source, target = pool.token_b, pool.token_a

    if source.reserve == 0 or input_amount.amount == 0:
        return TokenAmount(0, target.decimals)

    output = (target.reserve * input_amount.amount) // (
        source.reserve + input_amount.amount
    )
    return TokenAmount(output & 0xFFFFFFFFFFFFFFFF, target.decimals)