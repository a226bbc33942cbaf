from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

"""Config dataclasses for the order -> attendance sync.

These are the typed domain view of config/sync.yml. The loader in
studio_sync/config/loader.py builds them after schema validation.
"""


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None
    port: int | None
    user: str | None
    password: str | None
    database: str | None
    dsn: str | None


@dataclass(frozen=True)
class ShopifyConfig:
    """Order source settings. Token normally comes from SHOPIFY_API_TOKEN."""
    store_url: str | None
    api_token: str | None
    api_version: str = "2024-01"
    page_limit: int = 250
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class TermConfig:
    """Active term scope and sync window.

    `number` limits paid enrollment to one term ("2" for Term 2); `block`
    optionally limits it further to "A" or "B". Items sold for both blocks
    always pass a block filter.
    """
    name: str
    number: str | None
    block: str | None = None
    start_date: date | None = None
    weeks_before: int = 5


@dataclass(frozen=True)
class TableNames:
    paid_orders: str = "paid_orders"
    free_orders: str = "free_orders"
    paid_attendance: str = "paid_attendance"
    free_attendance: str = "free_attendance"
    social_attendance: str = "social_attendance"
    customers: str = "customers"


@dataclass(frozen=True)
class SyncConfig:
    """Root configuration object for a reconciliation run."""
    term: TermConfig
    shopify: ShopifyConfig
    database: DatabaseConfig
    tables: TableNames = field(default_factory=TableNames)
    free_class_recency_days: int = 14
    lock_id: int = 7205
    timezone: str = "UTC"
