# solarb

Asyncio building blocks for Solana arbitrage tooling.

## Modules

- `solarb.pubkey`: `b58encode` and `b58decode`. `Pubkey` is a 32-byte address, and
  `Pubkey.from_string` parses one from base58. `Keypair` is a 64-byte keypair, and
  `Keypair.pubkey()` gives its public half. `read_keypair_file` reads a keypair from a
  JSON array of 64 byte values.
- `solarb.utils`: the data types `PoolInfo`, `PoolToken`, `TokenAmount`, `DexType` and
  `ProgramConfig`. `DexType` offers `ORCA`, `RAYDIUM`, `LIFINITY`, `METEORA`, `PHOENIX`
  and `WHIRLPOOL`, and any other name stands for an unknown exchange. The module also has:
  - `calculate_output_amount`, which gives the constant-product output of a swap
    through a pool;
  - `setup_logging`, which logs INFO and above to stdout as `[LEVEL][logger] message`;
  - `load_keypair`, which reads a keypair file and logs the outcome;
  - `PoolParser`, an abstract base for pool-account decoders.
- `solarb.accounts`: `TokenMetadataCache` resolves metadata for a mint once and then
  caches it. It knows SOL, USDC and USDT. Any other mint gets a symbol built from the
  first four characters of its address, such as `Abcd..`, and 6 decimals.
  `parse_account_data` gives the account type and data length of a `token` or `mint`
  account. Any other type raises `ValueError`.
- `solarb.rpc`: `RpcClient` is a small JSON-RPC client over `httpx`. `SolanaRpcClient`
  retries a primary endpoint `max_retries` times, with a delay plus random jitter
  between attempts, and then tries each fallback endpoint once. Failures raise
  `RpcError`. Two heuristics are available as plain functions and as client methods:
  - `congestion_factor` / `get_network_congestion_factor`: ranges from 1.0 (idle) to 6.0.
    The method returns 1.5 when the samples cannot be fetched.
  - `fee_percentiles` / `get_recent_prioritization_fees`: the 25th, 50th and 75th
    percentile fees. They fall back to `(5000, 10000, 25000)` when there is no data
    or the call fails.
- `solarb.websocket`: `PubsubClient` speaks JSON-RPC pubsub over `websockets`.
  `SolanaWebsocketManager` works with it as follows:
  - it subscribes to accounts and decodes their base64 data;
  - it sends `AccountUpdate`, `AccountError` and `AccountDisconnected` items to every
    receiver of its `Broadcaster` (`manager.update_sender.subscribe()`);
  - a heartbeat task reconnects, trying the main URL and then the fallbacks, and
    resubscribes after the connection drops.
- `solarb.market_data`: `CryptoDataProvider` is an abstract interface for async price
  sources.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import asyncio

from solarb.pubkey import Pubkey
from solarb.rpc import SolanaRpcClient
from solarb.utils import DexType, PoolInfo, PoolToken, TokenAmount, calculate_output_amount

SOL = Pubkey.from_string("So11111111111111111111111111111111111111112")
USDC = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")

pool = PoolInfo(
    address=SOL,
    name="SOL/USDC",
    token_a=PoolToken(mint=SOL, symbol="SOL", decimals=9, reserve=1_000_000_000_000),
    token_b=PoolToken(mint=USDC, symbol="USDC", decimals=6, reserve=1_000_000_000_000),
    fee_numerator=25,
    fee_denominator=10_000,
    last_update_timestamp=0,
    dex_type=DexType.RAYDIUM,
)
print(calculate_output_amount(pool, TokenAmount(1_000_000_000, 9), True).to_float())


async def main():
    async with SolanaRpcClient("http://localhost:8899", [], 3, 0.5) as client:
        print(await client.is_healthy())
        print(await client.get_recent_prioritization_fees(150))


asyncio.run(main())
```

## What it does not do

- It does not detect or execute arbitrage, build or sign transactions, or provide a
  command-line program.
- `calculate_multihop_profit_and_slippage` checks that there is one direction per
  pool. It applies no pricing model and returns `(0.0, 0.0, 0.0)`.
- `calculate_rebate` returns 0.0, because no exchange has a rebate rate configured.
- `calculate_output_amount` ignores the pool fee.
- `PoolParser` and `CryptoDataProvider` are interfaces only. The package ships no
  pool decoder and no price source.
- `TokenMetadataCache` does not query the chain. The `rpc_client` argument is accepted
  but not used.
- `parse_account_data` does not decode account fields.
- `SolanaWebsocketManager.unsubscribe` only removes the local record and does not
  cancel the stream on the node. Nothing in the package puts `PoolUpdate` or
  `GenericUpdate` items on `ws_updates`, so `try_recv_update` only returns what the
  caller puts there.