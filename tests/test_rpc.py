import base64
import json

import httpx
import pytest
import respx

from solarb.pubkey import Pubkey
from solarb.rpc import (
    DEFAULT_FEES,
    PerformanceSample,
    RpcClient,
    RpcError,
    SolanaRpcClient,
    congestion_factor,
    fee_percentiles,
)

PRIMARY = "http://primary.test/"
FALLBACK = "http://fallback.test/"
SOL_MINT = "So11111111111111111111111111111111111111112"


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


def rpc_error(code, message):
    return httpx.Response(
        200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}}
    )


def account_value(payload):
    return {
        "context": {"slot": 1},
        "value": {
            "data": [base64.b64encode(payload).decode(), "base64"],
            "executable": False,
            "lamports": 1,
            "owner": "11111111111111111111111111111111",
            "rentEpoch": 0,
        },
    }


def sample(num_transactions, num_slots=150, period=60):
    return PerformanceSample(
        slot=1,
        num_transactions=num_transactions,
        num_slots=num_slots,
        sample_period_secs=period,
    )


def test_congestion_factor_without_samples_is_low():
    assert congestion_factor([]) == 1.0


def test_congestion_factor_is_capped():
    assert congestion_factor([sample(10**9)]) == 6.0


def test_congestion_factor_with_idle_network():
    assert congestion_factor([sample(0)]) == 3.0


def test_congestion_factor_zero_slots_uses_time_cap():
    assert congestion_factor([sample(0, num_slots=0)]) == congestion_factor([sample(0)])


def test_congestion_factor_grows_with_transactions():
    low = congestion_factor([sample(100)])
    high = congestion_factor([sample(4000)])
    assert 1.0 <= low < high <= 6.0


def test_fee_percentiles_defaults_on_empty():
    assert fee_percentiles([], 10) == DEFAULT_FEES
    assert fee_percentiles([1, 2, 3], 0) == DEFAULT_FEES


def test_fee_percentiles_single_value():
    assert fee_percentiles([777], 5) == (777, 777, 777)


def test_fee_percentiles_ordered_and_from_input():
    fees = [900, 100, 500, 300, 700, 200]
    p25, p50, p75 = fee_percentiles(fees, 10)
    assert p25 <= p50 <= p75
    assert {p25, p50, p75} <= set(fees)


def test_fee_percentiles_only_uses_recent_slots():
    result = fee_percentiles([1, 2, 3, 100, 200], 3)
    assert set(result) <= {1, 2, 3}


@pytest.mark.asyncio
async def test_get_account_decodes_data_and_sends_request():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return rpc_result(account_value(b"\x01\x02hello"))

    pubkey = Pubkey.from_string(SOL_MINT)
    with respx.mock:
        respx.post(PRIMARY).mock(side_effect=handler)
        async with RpcClient(PRIMARY) as client:
            data = await client.get_account(pubkey)
    assert data == b"\x01\x02hello"
    assert seen[0]["method"] == "getAccountInfo"
    assert seen[0]["params"][0] == SOL_MINT
    assert seen[0]["params"][1]["encoding"] == "base64"


@pytest.mark.asyncio
async def test_get_account_missing_raises():
    with respx.mock:
        respx.post(PRIMARY).mock(return_value=rpc_result({"context": {"slot": 1}, "value": None}))
        async with RpcClient(PRIMARY) as client:
            with pytest.raises(RpcError):
                await client.get_account(Pubkey(bytes(32)))


@pytest.mark.asyncio
async def test_node_error_carries_code():
    with respx.mock:
        respx.post(PRIMARY).mock(return_value=rpc_error(-32005, "Node is behind"))
        async with RpcClient(PRIMARY) as client:
            with pytest.raises(RpcError) as info:
                await client.get_health()
    assert info.value.code == -32005
    assert "Node is behind" in str(info.value)


@pytest.mark.asyncio
async def test_http_failure_raises_rpc_error():
    with respx.mock:
        respx.post(PRIMARY).mock(return_value=httpx.Response(503))
        async with RpcClient(PRIMARY) as client:
            with pytest.raises(RpcError):
                await client.get_recent_performance_samples(10)


@pytest.mark.asyncio
async def test_account_data_retries_then_uses_fallback():
    with respx.mock:
        primary = respx.post(PRIMARY).mock(return_value=rpc_error(-32000, "boom"))
        fallback = respx.post(FALLBACK).mock(return_value=rpc_result(account_value(b"data")))
        async with SolanaRpcClient(PRIMARY, [FALLBACK], 3, 0.0, max_jitter=0.0) as client:
            data = await client.get_account_data(Pubkey(bytes(32)))
    assert data == b"data"
    assert primary.call_count == 3
    assert fallback.call_count == 1


@pytest.mark.asyncio
async def test_account_data_all_endpoints_fail():
    with respx.mock:
        respx.post(PRIMARY).mock(return_value=rpc_error(-32000, "boom"))
        respx.post(FALLBACK).mock(return_value=rpc_error(-32000, "still down"))
        async with SolanaRpcClient(PRIMARY, [FALLBACK], 2, 0.0, max_jitter=0.0) as client:
            with pytest.raises(RpcError) as info:
                await client.get_account_data(Pubkey(bytes(32)))
    assert "Failed to get account data after retries" in str(info.value)
    assert "still down" in str(info.value)


@pytest.mark.asyncio
async def test_program_accounts_pass_filters_and_decode():
    seen = []
    owner = Pubkey.from_string(SOL_MINT)
    filters = [{"dataSize": 165}]

    def handler(request):
        seen.append(json.loads(request.content))
        return rpc_result(
            [{"pubkey": SOL_MINT, "account": account_value(b"abc")["value"]}]
        )

    with respx.mock:
        respx.post(PRIMARY).mock(side_effect=handler)
        async with SolanaRpcClient(PRIMARY, [], 1, 0.0, max_jitter=0.0) as client:
            accounts = await client.get_program_accounts(owner, filters)
    assert accounts == [(owner, b"abc")]
    assert seen[0]["method"] == "getProgramAccounts"
    assert seen[0]["params"][1]["filters"] == filters


@pytest.mark.asyncio
async def test_program_accounts_failure_raises():
    with respx.mock:
        respx.post(PRIMARY).mock(return_value=rpc_error(-32000, "boom"))
        async with SolanaRpcClient(PRIMARY, [], 2, 0.0, max_jitter=0.0) as client:
            with pytest.raises(RpcError):
                await client.get_program_accounts(Pubkey(bytes(32)), [])


@pytest.mark.asyncio
async def test_is_healthy_reflects_node():
    with respx.mock:
        respx.post(PRIMARY).mock(return_value=rpc_result("ok"))
        respx.post(FALLBACK).mock(return_value=rpc_error(-32005, "Node is unhealthy"))
        async with SolanaRpcClient(PRIMARY, [], 1, 0.0) as healthy:
            assert await healthy.is_healthy() is True
        async with SolanaRpcClient(FALLBACK, [], 1, 0.0) as unhealthy:
            assert await unhealthy.is_healthy() is False


@pytest.mark.asyncio
async def test_congestion_factor_endpoint():
    with respx.mock:
        respx.post(PRIMARY).mock(return_value=rpc_result([]))
        respx.post(FALLBACK).mock(return_value=rpc_error(-32000, "boom"))
        async with SolanaRpcClient(PRIMARY, [], 1, 0.0) as client:
            assert await client.get_network_congestion_factor() == 1.0
        async with SolanaRpcClient(FALLBACK, [], 1, 0.0) as client:
            assert await client.get_network_congestion_factor() == 1.5


@pytest.mark.asyncio
async def test_prioritization_fees_endpoint():
    fees = [{"slot": n, "prioritizationFee": fee} for n, fee in enumerate([40, 10, 30, 20])]
    with respx.mock:
        respx.post(PRIMARY).mock(return_value=rpc_result(fees))
        respx.post(FALLBACK).mock(return_value=rpc_error(-32000, "boom"))
        async with SolanaRpcClient(PRIMARY, [], 1, 0.0) as client:
            result = await client.get_recent_prioritization_fees(10)
        async with SolanaRpcClient(FALLBACK, [], 1, 0.0) as client:
            fallback_result = await client.get_recent_prioritization_fees(10)
    assert result == fee_percentiles([40, 10, 30, 20], 10)
    assert set(result) <= {10, 20, 30, 40}
    assert fallback_result == (5000, 10000, 25000)