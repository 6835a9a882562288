"""
Currency conversion and read-time price localization.

Prices are persisted in the base currency. Everything here works on copies of
the fetched documents, so converted amounts are never written back.

Failure policy is fail-fast: if any single conversion fails the whole
localization fails and the error propagates to the caller, no item falls back
to its base-currency price.
"""
import asyncio
import copy
from typing import Any, Dict, List, Optional

import httpx

from config import Settings
from errors import UpstreamFailure, ValidationError
from observability import get_logger

logger = get_logger(__name__)

TICKET_PRICE_FIELDS = ("foreigner", "native", "student")


class CurrencyConverter:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_currency = settings.BASE_CURRENCY.upper()
        self.rates_url = settings.EXCHANGE_RATES_URL.rstrip("/")
        self.timeout = settings.EXCHANGE_RATES_TIMEOUT
        self._transport = transport

    async def _fetch_rates(self) -> Dict[str, float]:
        url = f"{self.rates_url}/{self.base_currency}"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Exchange rate lookup failed", url=url, error=str(exc))
            raise UpstreamFailure(f"Currency service unavailable: {exc}") from exc

        if (
            not isinstance(payload, dict)
            or payload.get("result", "success") != "success"
            or not isinstance(payload.get("rates"), dict)
        ):
            logger.error("Exchange rate lookup returned an error", url=url, payload=payload)
            raise UpstreamFailure("Currency service returned an invalid response")
        return payload["rates"]

    async def convert_price(self, amount: float, target_currency: str) -> float:
        target = target_currency.upper()
        if target == self.base_currency:
            return amount
        rates = await self._fetch_rates()
        rate = rates.get(target)
        if rate is None:
            raise ValidationError(f"Unsupported currency: {target}")
        return round(float(amount) * float(rate), 2)


async def _convert_ticket_prices(museum: Dict[str, Any], currency: str, converter) -> Dict[str, Any]:
    museum = dict(museum)
    prices = museum.get("ticket_prices")
    if not prices:
        return museum
    prices = dict(prices)
    fields = [f for f in TICKET_PRICE_FIELDS if prices.get(f)]
    converted = await asyncio.gather(*(converter.convert_price(prices[f], currency) for f in fields))
    prices.update(zip(fields, converted))
    museum["ticket_prices"] = prices
    return museum


async def localize_museums(museums: List[Dict[str, Any]], currency: str, converter) -> List[Dict[str, Any]]:
    """Convert foreigner/native/student ticket prices; absent prices stay absent."""
    return list(await asyncio.gather(*(_convert_ticket_prices(m, currency, converter) for m in museums)))


async def _convert_field(item: Dict[str, Any], field: str, currency: str, converter, default) -> Dict[str, Any]:
    item = dict(item)
    amount = item.get(field)
    if amount is None:
        if default is None:
            return item
        amount = default
    item[field] = await converter.convert_price(amount, currency)
    return item


async def localize_prices(
    items: List[Dict[str, Any]],
    currency: str,
    converter,
    field: str = "price",
    default: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """Convert a flat price field on every item. A missing price is skipped unless `default` is given."""
    return list(await asyncio.gather(*(_convert_field(i, field, currency, converter, default) for i in items)))


async def localize_cart(lines: List[Dict[str, Any]], currency: str, converter) -> List[Dict[str, Any]]:
    """Convert the populated product price of every cart line; a missing price counts as 0."""
    async def _line(line: Dict[str, Any]) -> Dict[str, Any]:
        line = copy.copy(line)
        if isinstance(line.get("product"), dict):
            line["product"] = await _convert_field(line["product"], "price", currency, converter, 0)
        return line

    return list(await asyncio.gather(*(_line(l) for l in lines)))
