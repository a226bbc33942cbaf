from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.request
from datetime import UTC, datetime
from urllib.parse import urlencode

from ..models.config_models import ShopifyConfig
from ..models.orders import RawOrder
from .base import SourceFetchError

"""Shopify Admin API order source.

Fetches every order created at or after `since` (any status), following the
cursor pagination advertised in the Link response header.
"""

__all__ = [
    "ShopifyOrderSource",
    "next_page_url",
]

logger = logging.getLogger(__name__)

NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')


def next_page_url(link_header: str | None) -> str | None:
    if not link_header:
        return None
    match = NEXT_LINK.search(link_header)
    return match.group(1) if match else None


class ShopifyOrderSource:
    def __init__(self, config: ShopifyConfig) -> None:
        if not config.store_url or not config.api_token:
            raise SourceFetchError("SHOPIFY_STORE_URL and SHOPIFY_API_TOKEN must be set")
        self.config = config

    def first_page_url(self, since: datetime) -> str:
        if since.tzinfo is None:
            since = since.replace(tzinfo=UTC)
        query = urlencode(
            {
                "status": "any",
                "limit": self.config.page_limit,
                "created_at_min": since.isoformat(),
            }
        )
        store = self.config.store_url.removeprefix("https://").rstrip("/")
        return f"https://{store}/admin/api/{self.config.api_version}/orders.json?{query}"

    def _get(self, url: str) -> tuple[dict, str | None]:
        req = urllib.request.Request(
            url,
            headers={
                "X-Shopify-Access-Token": self.config.api_token,
                "Content-Type": "application/json",
            },
            method="GET",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.config.timeout_seconds) as resp:
                body = resp.read().decode("utf-8", errors="replace")
                link = resp.headers.get("Link")
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise SourceFetchError(f"Shopify API error: {exc.code} {detail[:300]}") from exc
        except urllib.error.URLError as exc:
            raise SourceFetchError(f"Shopify connection failed: {exc}") from exc
        try:
            return json.loads(body), link
        except json.JSONDecodeError as exc:
            raise SourceFetchError(f"Shopify returned invalid JSON: {exc}") from exc

    def fetch_orders(self, since: datetime) -> list[RawOrder]:
        orders: list[RawOrder] = []
        url: str | None = self.first_page_url(since)
        pages = 0
        while url:
            logger.debug("fetching %s", url)
            payload, link = self._get(url)
            pages += 1
            for raw in payload.get("orders") or []:
                try:
                    orders.append(RawOrder.from_dict(raw))
                except (KeyError, ValueError) as e:
                    raise SourceFetchError(f"malformed order {raw.get('id')!r}: {e}") from e
            url = next_page_url(link)
        logger.info("fetched %d orders in %d page(s) since %s", len(orders), pages, since.isoformat())
        return orders
