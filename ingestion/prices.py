# ingestion/prices.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol


class PriceSource(Protocol):
    def get_usd_price(self, primary_token: str, secondary_token: str) -> Optional[Decimal]:
        ...


class StaticPriceSource:
    """A single configured quote, returned for any token pair."""

    def __init__(self, price: Decimal | float | str):
        self.price = Decimal(str(price))

    def get_usd_price(self, primary_token: str, secondary_token: str) -> Optional[Decimal]:
        return self.price
