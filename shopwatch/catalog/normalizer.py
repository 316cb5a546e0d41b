"""Normalize raw storefront product payloads into catalog items."""
import logging
import re
from typing import Any, Optional

from shopwatch.catalog.models import CatalogItem, Image, Variant

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"<[^>]*>")


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def strip_html(html: str | None) -> str | None:
    """Strip tags from an HTML description."""
    if not html:
        return None
    return TAG_RE.sub("", html).strip() or None


def normalize_variant(raw: dict[str, Any]) -> Variant:
    quantity = int(raw.get("inventory_quantity") or 0)
    return Variant(
        id=str(raw["id"]),
        title=raw.get("title") or "",
        price=_to_float(raw.get("price")) or 0.0,
        sku=raw.get("sku") or None,
        available=quantity > 0,
        inventory_quantity=quantity,
    )


def normalize_image(raw: dict[str, Any]) -> Image:
    return Image(
        id=str(raw["id"]),
        src=raw.get("src") or "",
        alt=raw.get("alt"),
        width=int(raw.get("width") or 0),
        height=int(raw.get("height") or 0),
    )


def normalize_product(raw: dict[str, Any], base_url: str) -> CatalogItem:
    """Convert one storefront product into a CatalogItem.

    Price is the minimum variant price and availability is true when any
    variant has positive stock.
    """
    raw_variants = raw.get("variants") or []
    variants = [normalize_variant(v) for v in raw_variants]
    prices = [v.price for v in variants]
    compare_prices = [
        p for p in (_to_float(v.get("compare_at_price")) for v in raw_variants) if p is not None
    ]

    handle = raw.get("handle") or ""
    return CatalogItem(
        id=str(raw["id"]),
        title=raw.get("title") or "",
        handle=handle,
        price=min(prices) if prices else 0.0,
        compare_at_price=min(compare_prices) if compare_prices else None,
        available=any(v.available for v in variants),
        variants=variants,
        images=[normalize_image(img) for img in raw.get("images") or []],
        description=strip_html(raw.get("body_html")),
        url=f"{base_url.rstrip('/')}/products/{handle}",
    )


def normalize_products(raw_products: list[dict[str, Any]], base_url: str) -> list[CatalogItem]:
    """Normalize a product list, skipping entries that cannot be parsed."""
    items = []
    for raw in raw_products:
        try:
            items.append(normalize_product(raw, base_url))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed product {raw.get('id', '?')}: {e}")
    return items
