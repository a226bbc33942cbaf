from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..models.orders import Customer, RawOrder

"""Collaborator contracts for the order source and the customer directory."""

__all__ = [
    "CustomerDirectory",
    "OrderSource",
    "SourceFetchError",
]


class SourceFetchError(Exception):
    """The order source or customer directory could not deliver."""
    pass


class OrderSource(Protocol):
    def fetch_orders(self, since: datetime) -> list[RawOrder]: ...


class CustomerDirectory(Protocol):
    def fetch_customers(self) -> list[Customer]: ...
