import inspect

import pytest

from solarb.market_data import CryptoDataProvider


class _TableProvider(CryptoDataProvider):
    def __init__(self, prices):
        self._prices = dict(prices)

    async def get_price(self, symbol):
        return self._prices.get(symbol)


@pytest.mark.asyncio
async def test_provider_returns_known_price():
    assert inspect.iscoroutinefunction(CryptoDataProvider.get_price)
    with pytest.raises(TypeError):
        CryptoDataProvider()
    provider = _TableProvider({"SOL": 150.0})
    assert isinstance(provider, CryptoDataProvider)
    assert await provider.get_price("SOL") == 150.0


@pytest.mark.asyncio
async def test_provider_returns_none_for_unknown():
    assert set(CryptoDataProvider.__abstractmethods__) == {"get_price"}
    with pytest.raises(TypeError):
        CryptoDataProvider()
    provider = _TableProvider({"SOL": 150.0})
    assert await provider.get_price("BTC") is None


def test_interface_cannot_be_instantiated():
    with pytest.raises(TypeError):
        CryptoDataProvider()


def test_subclass_without_get_price_is_abstract():
    class Incomplete(CryptoDataProvider):
        pass

    with pytest.raises(TypeError):
        CryptoDataProvider()
    with pytest.raises(TypeError):
        Incomplete()
    assert set(Incomplete.__abstractmethods__) == {"get_price"}