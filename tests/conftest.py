"""Shared fixtures and fakes."""
import asyncio
from typing import Optional

import pytest

from shopwatch.catalog.models import CatalogItem, Variant
from shopwatch.notify.alerts import AlertDeliveryError
from shopwatch.store.database import CatalogStore

T0 = 1_700_000_000_000


def make_item(
    item_id: str = "1",
    title: str = "Test Item",
    price: float = 50.0,
    available: bool = False,
    variants: Optional[list[Variant]] = None,
    **kwargs,
) -> CatalogItem:
    if variants is None:
        variants = [
            Variant(
                id=f"{item_id}01",
                title="Default",
                price=price,
                available=available,
                inventory_quantity=3 if available else 0,
            )
        ]
    return CatalogItem(
        id=item_id,
        title=title,
        handle=f"item-{item_id}",
        price=price,
        available=available,
        variants=variants,
        url=f"https://shop.example.com/products/item-{item_id}",
        **kwargs,
    )


class FakeClock:
    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += int(minutes * 60 * 1000)


class FakeChannel:
    name = "fake"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: list[str] = []

    async def deliver(self, message: str) -> None:
        self.messages.append(message)
        if self.fail:
            raise AlertDeliveryError("delivery failed")


class FakeSource:
    def __init__(self, items: Optional[list[CatalogItem]] = None, error: Optional[Exception] = None):
        self.items = items or []
        self.error = error
        self.calls = 0

    async def fetch_catalog(self) -> list[CatalogItem]:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return [item.model_copy(deep=True) for item in self.items]


class RecordingGateway:
    def __init__(self):
        self.events: list[tuple[str, object]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def emit_heartbeat(self) -> None:
        self.events.append(("heartbeat", None))

    def emit_items_updated(self, items) -> None:
        self.events.append(("items-updated", items))

    def emit_item_new(self, item) -> None:
        self.events.append(("item-new", item))

    def emit_error(self, error: str) -> None:
        self.events.append(("error", error))

    def emit_log(self, level: str, message: str) -> None:
        self.events.append(("log", message))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def store(tmp_path):
    catalog_store = CatalogStore(tmp_path / "shopwatch.db")
    await catalog_store.initialize()
    yield catalog_store
    await catalog_store.close()
