from __future__ import annotations

import io
import json
import urllib.error
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from studio_sync.models.config_models import ShopifyConfig
from studio_sync.sources.base import SourceFetchError
from studio_sync.sources.shopify import ShopifyOrderSource, next_page_url

SINCE = datetime(2025, 3, 31, tzinfo=timezone.utc)


def _order(order_id: int) -> dict:
    return {
        "id": order_id,
        "order_number": 1000 + order_id,
        "created_at": "2025-05-20T18:00:00-04:00",
        "financial_status": "paid",
        "note": None,
        "total_price": "90.00",
        "total_discounts": "10.00",
        "customer": {"id": 77, "first_name": "Ana", "last_name": "Lopez", "email": "ana@example.com"},
        "line_items": [
            {"title": "Level 1", "variant_title": "Term 2B / Leader", "price": "50.00", "quantity": 2},
        ],
    }


class FakeResponse:
    def __init__(self, payload, link: str | None = None) -> None:
        self._body = json.dumps(payload).encode("utf-8")
        self.headers = {"Link": link} if link else {}

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture()
def source() -> ShopifyOrderSource:
    return ShopifyOrderSource(ShopifyConfig(store_url="https://studio.myshopify.com/", api_token="shpat_test"))


def test_requires_credentials():
    with pytest.raises(SourceFetchError):
        ShopifyOrderSource(ShopifyConfig(store_url="studio.myshopify.com", api_token=None))


def test_first_page_url(source):
    url = source.first_page_url(SINCE)
    assert url.startswith("https://studio.myshopify.com/admin/api/2024-01/orders.json?")
    assert "status=any" in url
    assert "limit=250" in url
    assert "created_at_min=2025-03-31T00%3A00%3A00%2B00%3A00" in url


def test_next_page_url():
    header = '<https://s/admin/api/2024-01/orders.json?page_info=abc>; rel="previous", <https://s/admin/api/2024-01/orders.json?page_info=def>; rel="next"'
    assert next_page_url(header) == "https://s/admin/api/2024-01/orders.json?page_info=def"
    assert next_page_url('<https://s/x>; rel="previous"') is None
    assert next_page_url(None) is None


def test_fetch_follows_pagination(source):
    pages = [
        FakeResponse({"orders": [_order(1), _order(2)]}, link='<https://studio.myshopify.com/next>; rel="next"'),
        FakeResponse({"orders": [_order(3)]}),
    ]
    with patch("studio_sync.sources.shopify.urllib.request.urlopen", side_effect=pages) as urlopen:
        orders = source.fetch_orders(SINCE)
    assert [o.id for o in orders] == [1, 2, 3]
    assert urlopen.call_count == 2
    request = urlopen.call_args_list[1].args[0]
    assert request.full_url == "https://studio.myshopify.com/next"
    assert request.get_header("X-shopify-access-token") == "shpat_test"


def test_fetch_maps_order_fields(source):
    with patch("studio_sync.sources.shopify.urllib.request.urlopen", return_value=FakeResponse({"orders": [_order(5)]})):
        order = source.fetch_orders(SINCE)[0]
    assert order.customer_id == 77
    assert order.order_number == "1005"
    assert order.total_discounts == Decimal("10.00")
    assert order.line_items[0].value == Decimal("100.00")
    assert order.is_paid
    assert order.note == ""


def test_http_error_raises_source_fetch_error(source):
    error = urllib.error.HTTPError("https://x", 401, "Unauthorized", {}, io.BytesIO(b'{"errors":"bad token"}'))
    with patch("studio_sync.sources.shopify.urllib.request.urlopen", side_effect=error):
        with pytest.raises(SourceFetchError, match="401"):
            source.fetch_orders(SINCE)


def test_connection_error_raises_source_fetch_error(source):
    with patch("studio_sync.sources.shopify.urllib.request.urlopen", side_effect=urllib.error.URLError("timed out")):
        with pytest.raises(SourceFetchError, match="connection failed"):
            source.fetch_orders(SINCE)


def test_malformed_order_raises(source):
    bad = _order(9)
    del bad["created_at"]
    with patch("studio_sync.sources.shopify.urllib.request.urlopen", return_value=FakeResponse({"orders": [bad]})):
        with pytest.raises(SourceFetchError, match="malformed order"):
            source.fetch_orders(SINCE)
