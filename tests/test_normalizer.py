"""Tests for storefront payload normalization."""
from shopwatch.catalog.normalizer import normalize_product, normalize_products, strip_html

RAW_PRODUCT = {
    "id": 1001,
    "title": "Lumen Hoodie",
    "handle": "lumen-hoodie",
    "body_html": "<p>Warm <strong>and</strong> soft</p>",
    "variants": [
        {"id": 1, "title": "S", "price": "59.99", "sku": "H-S", "inventory_quantity": 0, "compare_at_price": "79.99"},
        {"id": 2, "title": "M", "price": "49.99", "sku": "H-M", "inventory_quantity": 4, "compare_at_price": None},
    ],
    "images": [{"id": 7, "src": "https://cdn.example.com/h.png", "alt": None, "width": 800, "height": 600}],
}


def test_normalize_product():
    """Prices, availability, url and description are derived from variants."""
    item = normalize_product(RAW_PRODUCT, "https://shop.example.com/")
    assert item.id == "1001"
    assert item.price == 49.99
    assert item.compare_at_price == 79.99
    assert item.available is True
    assert item.url == "https://shop.example.com/products/lumen-hoodie"
    assert item.description == "Warm and soft"
    assert [v.available for v in item.variants] == [False, True]
    assert item.variants[1].inventory_quantity == 4
    assert item.images[0].width == 800


def test_normalize_product_without_variants():
    """No variants means price 0 and unavailable."""
    item = normalize_product({"id": 5, "title": "Empty", "handle": "empty"}, "https://shop.example.com")
    assert item.price == 0.0
    assert item.available is False
    assert item.compare_at_price is None
    assert item.description is None


def test_normalize_products_skips_malformed():
    """Entries without an id are skipped."""
    items = normalize_products([RAW_PRODUCT, {"title": "no id"}], "https://shop.example.com")
    assert [i.id for i in items] == ["1001"]


def test_strip_html_empty():
    """Blank descriptions become None."""
    assert strip_html("") is None
    assert strip_html("<p> </p>") is None
