"""
Unit tests for CatalogClient, with the HTTP session mocked out.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from storefront.exceptions import CatalogUnavailableError, ItemNotFoundError
from storefront.services.catalog_client import CatalogClient


def response(status_code, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return resp


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(http):
    return CatalogClient(base_url="http://catalog:8001/", timeout=1, session=http)


def test_fetch_item(client, http):
    http.get.return_value = response(200, {"id": 7, "name": "Espresso Roast 1kg", "price": 24.99})

    item = client.fetch_item(7)

    assert item.name == "Espresso Roast 1kg"
    assert item.price == Decimal("24.99")
    http.get.assert_called_once_with("http://catalog:8001/items/7", timeout=1)


def test_missing_item_is_none(client, http):
    http.get.return_value = response(404)

    assert client.fetch_item(99) is None
    assert client.exists(99) is False
    with pytest.raises(ItemNotFoundError):
        client.current_price(99)


def test_server_error_means_unavailable(client, http):
    http.get.return_value = response(500)

    with pytest.raises(CatalogUnavailableError) as exc:
        client.fetch_item(1)

    assert exc.value.status_code == 503


def test_connection_errors_are_retried(client, http):
    http.get.side_effect = [
        requests.ConnectionError("refused"),
        response(200, {"id": 1, "name": "House Blend 250g", "price": "12.5"}),
    ]

    assert client.current_price(1) == Decimal("12.50")
    assert http.get.call_count == 2


def test_gives_up_after_retries(client, http):
    http.get.side_effect = requests.Timeout("slow")

    with pytest.raises(CatalogUnavailableError):
        client.fetch_item(1)

    assert http.get.call_count == 3
