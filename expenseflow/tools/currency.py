import logging
from typing import Dict, NamedTuple, Optional

import httpx

from expenseflow.config import settings
from expenseflow.errors import UpstreamServiceError

logger = logging.getLogger(__name__)


class Conversion(NamedTuple):
    converted_amount: float
    exchange_rate: float


class CurrencyConverter:
    """
    Converts amounts with live rates from exchangerate-api.com.
    Rates are fetched per call; nothing is cached.
    """

    def __init__(self, api_url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_url = api_url or settings.EXCHANGE_RATE_API_URL
        self.timeout = timeout or settings.EXCHANGE_RATE_TIMEOUT_SECONDS

    async def get_rates(self, base: str = "USD") -> Dict[str, float]:
        """Full rate table for `base`."""
        base = base.upper()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.api_url.format(base=base))
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Exchange rate API error for {base}: {e}")
            raise UpstreamServiceError(f"Currency conversion failed: {e}", code="CURRENCY_CONVERSION_FAILED")
        return data.get("rates", {})

    async def convert(self, amount: float, from_currency: str, to_currency: str) -> Conversion:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return Conversion(round(amount, 2), 1.0)

        rates = await self.get_rates(from_currency)
        rate = rates.get(to_currency)
        if not rate:
            logger.error(f"No exchange rate from {from_currency} to {to_currency}")
            raise UpstreamServiceError(
                f"Currency conversion failed: Exchange rate not found for {from_currency} to {to_currency}",
                code="CURRENCY_CONVERSION_FAILED"
            )
        return Conversion(round(amount * rate, 2), float(rate))


currency_converter = CurrencyConverter()
