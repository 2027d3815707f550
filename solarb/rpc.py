"""JSON-RPC access to a Solana node, with retries, fallbacks and fee heuristics."""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import logging
import math
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from solarb.pubkey import Pubkey

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_COMMITMENT = "confirmed"
DEFAULT_FEES: Tuple[int, int, int] = (5000, 10000, 25000)
PERFORMANCE_SAMPLE_LIMIT = 10
ERROR_CONGESTION_FACTOR = 1.5
_TX_CAP = 3.0
_TIME_CAP = 2.0


class RpcError(Exception):
    """A failed RPC request: transport failure, node error or malformed reply."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class PerformanceSample:
    """One entry of ``getRecentPerformanceSamples``."""

    slot: int
    num_transactions: int
    num_slots: int
    sample_period_secs: int
    num_non_vote_transactions: Optional[int] = None


@dataclass(frozen=True)
class PrioritizationFee:
    """One entry of ``getRecentPrioritizationFees``."""

    slot: int
    prioritization_fee: int


def _parse_sample(entry: Dict[str, Any]) -> PerformanceSample:
    return PerformanceSample(
        slot=int(entry["slot"]),
        num_transactions=int(entry["numTransactions"]),
        num_slots=int(entry["numSlots"]),
        sample_period_secs=int(entry["samplePeriodSecs"]),
        num_non_vote_transactions=entry.get("numNonVoteTransactions"),
    )


def _parse_fee(entry: Dict[str, Any]) -> PrioritizationFee:
    return PrioritizationFee(
        slot=int(entry["slot"]), prioritization_fee=int(entry["prioritizationFee"])
    )


def _decode_data(data: Any) -> bytes:
    if not (isinstance(data, list) and len(data) == 2 and data[1] == "base64"):
        raise RpcError(f"unexpected account data encoding: {data!r}")
    try:
        return base64.b64decode(data[0], validate=True)
    except (binascii.Error, TypeError) as exc:
        raise RpcError(f"invalid base64 account data: {exc}") from exc


class RpcClient:
    """A minimal asynchronous JSON-RPC client for one endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        commitment: str = DEFAULT_COMMITMENT,
    ) -> None:
        self.url = url
        self.commitment = commitment
        self._http = httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
        }
        if params is not None:
            payload["params"] = params
        try:
            response = await self._http.post(self.url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise RpcError(f"{method} request failed: {exc}") from exc
        except ValueError as exc:
            raise RpcError(f"{method} returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise RpcError(f"{method} returned a malformed response")
        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(str(error.get("message", error)), code=error.get("code"))
            raise RpcError(str(error))
        if "result" not in body:
            raise RpcError(f"{method} response has no result")
        return body["result"]

    def _account_config(self) -> Dict[str, Any]:
        return {"encoding": "base64", "commitment": self.commitment}

    async def get_account(self, pubkey: Pubkey) -> bytes:
        """The data of the account at ``pubkey``."""
        result = await self._call("getAccountInfo", [str(pubkey), self._account_config()])
        try:
            value = result["value"]
        except (KeyError, TypeError) as exc:
            raise RpcError("getAccountInfo returned a malformed result") from exc
        if value is None:
            raise RpcError(f"AccountNotFound: pubkey={pubkey}")
        try:
            return _decode_data(value["data"])
        except (KeyError, TypeError) as exc:
            raise RpcError("getAccountInfo returned a malformed account") from exc

    async def get_program_accounts(
        self, program_id: Pubkey, filters: Sequence[Dict[str, Any]]
    ) -> List[Tuple[Pubkey, bytes]]:
        """Addresses and data of the accounts owned by ``program_id`` matching ``filters``."""
        config = self._account_config()
        config["filters"] = list(filters)
        result = await self._call("getProgramAccounts", [str(program_id), config])
        try:
            return [
                (Pubkey.from_string(entry["pubkey"]), _decode_data(entry["account"]["data"]))
                for entry in result
            ]
        except (KeyError, TypeError, ValueError) as exc:
            if isinstance(exc, RpcError):
                raise
            raise RpcError("getProgramAccounts returned a malformed result") from exc

    async def get_health(self) -> None:
        """Raise RpcError unless the node reports itself healthy."""
        result = await self._call("getHealth")
        if result != "ok":
            raise RpcError(f"node is unhealthy: {result!r}")

    async def get_recent_performance_samples(
        self, limit: Optional[int]
    ) -> List[PerformanceSample]:
        """Up to ``limit`` recent performance samples, newest first."""
        params = [limit] if limit is not None else None
        result = await self._call("getRecentPerformanceSamples", params)
        try:
            return [_parse_sample(entry) for entry in result]
        except (KeyError, TypeError, ValueError) as exc:
            raise RpcError("getRecentPerformanceSamples returned a malformed result") from exc

    async def get_recent_prioritization_fees(
        self, addresses: Sequence[Pubkey]
    ) -> List[PrioritizationFee]:
        """Recent prioritization fees paid by transactions locking ``addresses``."""
        result = await self._call(
            "getRecentPrioritizationFees", [[str(address) for address in addresses]]
        )
        try:
            return [_parse_fee(entry) for entry in result]
        except (KeyError, TypeError, ValueError) as exc:
            raise RpcError("getRecentPrioritizationFees returned a malformed result") from exc

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()


def congestion_factor(samples: Sequence[PerformanceSample]) -> float:
    """Congestion estimate from performance samples; 1.0 means idle."""
    if not samples:
        return 1.0
    count = len(samples)
    avg_tx_count = sum(float(s.num_transactions) for s in samples) / count
    avg_slot_time = (
        sum(
            (s.sample_period_secs * 1_000_000.0) / s.num_slots if s.num_slots else math.inf
            for s in samples
        )
        / count
    )
    tx_factor = min(avg_tx_count / 2000.0, _TX_CAP)
    time_factor = min(avg_slot_time / 600.0, _TIME_CAP)
    return 1.0 + tx_factor + time_factor


def fee_percentiles(fees: Sequence[int], recent_slots: int) -> Tuple[int, int, int]:
    """25th, 50th and 75th percentile of the first ``recent_slots`` fees."""
    recent = sorted(fees[:recent_slots])
    if not recent:
        return DEFAULT_FEES
    size = len(recent)
    return (
        recent[int(size * 0.25)],
        recent[int(size * 0.5)],
        recent[int(size * 0.75)],
    )


class SolanaRpcClient:
    """RPC access that retries the primary endpoint, then tries fallbacks in order."""

    def __init__(
        self,
        primary_endpoint: str,
        fallback_endpoints: Sequence[str],
        max_retries: int,
        retry_delay: float,
        max_jitter: float = 0.5,
    ) -> None:
        self.primary_client = RpcClient(primary_endpoint)
        self.fallback_clients = [RpcClient(endpoint) for endpoint in fallback_endpoints]
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._jitter_ms = max(0, int(round(max_jitter * 1000)))

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        for client in [self.primary_client, *self.fallback_clients]:
            await client.aclose()

    async def _pause(self) -> None:
        jitter = random.randrange(self._jitter_ms) / 1000 if self._jitter_ms else 0.0
        await asyncio.sleep(self.retry_delay + jitter)

    async def get_account_data(self, pubkey: Pubkey) -> bytes:
        """Account data, retrying the primary endpoint before the fallbacks."""
        last_error: Optional[RpcError] = None
        for _ in range(self.max_retries):
            try:
                data = await self.primary_client.get_account(pubkey)
            except RpcError as err:
                logger.error("RPC error fetching account %s: %s", pubkey, err)
                last_error = err
                await self._pause()
            else:
                logger.debug("Fetched account data for %s", pubkey)
                return data

        for fallback in self.fallback_clients:
            try:
                data = await fallback.get_account(pubkey)
            except RpcError as err:
                logger.error("Fallback RPC error: %s", err)
                last_error = err
            else:
                logger.info("Fetched account data via fallback for %s", pubkey)
                return data

        raise RpcError(
            f"Failed to get account data after retries. Last error: {last_error!r}"
        )

    async def get_program_accounts(
        self, program_id: Pubkey, filters: Sequence[Dict[str, Any]]
    ) -> List[Tuple[Pubkey, bytes]]:
        """Program accounts matching ``filters``, with retries and fallbacks."""
        for _ in range(self.max_retries):
            try:
                return await self.primary_client.get_program_accounts(program_id, filters)
            except RpcError as err:
                logger.error("RPC error fetching program accounts: %s", err)
                await self._pause()

        for fallback in self.fallback_clients:
            try:
                return await fallback.get_program_accounts(program_id, filters)
            except RpcError as err:
                logger.error("Fallback RPC error fetching program accounts: %s", err)

        raise RpcError("Failed to get program accounts after retries")

    async def is_healthy(self) -> bool:
        """Whether the primary endpoint passes its health check."""
        try:
            await self.primary_client.get_health()
        except RpcError:
            return False
        return True

    async def get_network_congestion_factor(self) -> float:
        """Congestion from recent samples; 1.5 when they cannot be fetched."""
        try:
            samples = await self.primary_client.get_recent_performance_samples(
                PERFORMANCE_SAMPLE_LIMIT
            )
        except RpcError as err:
            logger.error("Failed to get performance samples: %s", err)
            return ERROR_CONGESTION_FACTOR
        return congestion_factor(samples)

    async def get_recent_prioritization_fees(self, recent_slots: int) -> Tuple[int, int, int]:
        """Fee percentiles over recent slots; defaults when no data is available."""
        try:
            fees = await self.primary_client.get_recent_prioritization_fees([])
        except RpcError as err:
            logger.error("Failed to get recent prioritization fees: %s", err)
            return DEFAULT_FEES
        return fee_percentiles([fee.prioritization_fee for fee in fees], recent_slots)