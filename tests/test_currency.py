import httpx
import pytest

from config import Settings
from currency import CurrencyConverter, localize_museums, localize_prices
from errors import UpstreamFailure, ValidationError
from tests.conftest import FailingConverter

RATES_URL = "https://rates.test/v6/latest"


def make_converter(handler):
    settings = Settings(BASE_CURRENCY="EGP", EXCHANGE_RATES_URL=RATES_URL)
    return CurrencyConverter(settings, transport=httpx.MockTransport(handler))


def rates_handler(request):
    assert str(request.url) == f"{RATES_URL}/EGP"
    return httpx.Response(200, json={"result": "success", "base_code": "EGP", "rates": {"EGP": 1, "EUR": 0.9}})


@pytest.mark.asyncio
async def test_convert_price():
    converter = make_converter(rates_handler)
    assert await converter.convert_price(100, "eur") == 90.0


@pytest.mark.asyncio
async def test_base_currency_skips_lookup():
    def handler(request):
        raise AssertionError("no request expected")

    converter = make_converter(handler)
    assert await converter.convert_price(42.5, "EGP") == 42.5


@pytest.mark.asyncio
async def test_conversion_is_repeatable():
    converter = make_converter(rates_handler)
    first = await converter.convert_price(100, "EUR")
    second = await converter.convert_price(100, "EUR")
    assert first == second == 90.0


@pytest.mark.asyncio
async def test_unsupported_currency():
    converter = make_converter(rates_handler)
    with pytest.raises(ValidationError):
        await converter.convert_price(100, "XYZ")


@pytest.mark.asyncio
async def test_upstream_error_status():
    converter = make_converter(lambda request: httpx.Response(503))
    with pytest.raises(UpstreamFailure):
        await converter.convert_price(100, "EUR")


@pytest.mark.asyncio
async def test_upstream_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    converter = make_converter(handler)
    with pytest.raises(UpstreamFailure):
        await converter.convert_price(100, "EUR")


@pytest.mark.asyncio
async def test_upstream_error_payload():
    converter = make_converter(lambda request: httpx.Response(200, json={"result": "error"}))
    with pytest.raises(UpstreamFailure):
        await converter.convert_price(100, "EUR")


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"[]", b"null", b'"rates"', b"42"])
async def test_upstream_payload_not_an_object(body):
    converter = make_converter(
        lambda request: httpx.Response(200, content=body, headers={"content-type": "application/json"})
    )
    with pytest.raises(UpstreamFailure):
        await converter.convert_price(100, "EUR")


@pytest.mark.asyncio
async def test_localize_museums_leaves_absent_prices_absent(converter):
    museum = {"name": "Egyptian Museum", "ticket_prices": {"foreigner": 100, "native": 50}}

    [result] = await localize_museums([museum], "EUR", converter)

    assert result["ticket_prices"] == {"foreigner": 90.0, "native": 45.0}
    assert "student" not in result["ticket_prices"]
    assert museum["ticket_prices"] == {"foreigner": 100, "native": 50}


@pytest.mark.asyncio
async def test_localize_museums_without_prices(converter):
    museums = [{"name": "A"}, {"name": "B", "ticket_prices": {}}]
    assert await localize_museums(museums, "EUR", converter) == museums
    assert converter.calls == []


@pytest.mark.asyncio
async def test_localize_museums_fails_fast():
    museums = [{"name": "A", "ticket_prices": {"foreigner": 100}}]
    with pytest.raises(UpstreamFailure):
        await localize_museums(museums, "EUR", FailingConverter())


@pytest.mark.asyncio
async def test_localize_prices(converter):
    items = [{"name": "a", "price": 10}, {"name": "b"}]
    result = await localize_prices(items, "EUR", converter)
    assert result == [{"name": "a", "price": 9.0}, {"name": "b"}]

    defaulted = await localize_prices(items, "EUR", converter, default=0)
    assert defaulted[1]["price"] == 0
    assert items[0]["price"] == 10
