"""Change detection between two catalog snapshots."""
from dataclasses import dataclass, field
from typing import Iterable, Optional

from shopwatch.catalog.models import CatalogItem


@dataclass
class PriceChange:
    item: CatalogItem
    old_price: float
    new_price: float
    old_compare_at_price: Optional[float] = None
    new_compare_at_price: Optional[float] = None


@dataclass
class AvailabilityChange:
    item: CatalogItem
    was: bool
    is_: bool


@dataclass
class ChangeSet:
    """Result of comparing a prior snapshot with a fresh fetch."""

    new_items: list[CatalogItem] = field(default_factory=list)
    updated_items: list[CatalogItem] = field(default_factory=list)
    price_changes: list[PriceChange] = field(default_factory=list)
    availability_changes: list[AvailabilityChange] = field(default_factory=list)

    @property
    def restocked_items(self) -> list[CatalogItem]:
        """Items that went from unavailable to available."""
        return [c.item for c in self.availability_changes if c.is_ and not c.was]

    def has_changes(self) -> bool:
        return bool(self.new_items or self.updated_items)


def compare(prior_items: Iterable[CatalogItem], fresh_items: Iterable[CatalogItem]) -> ChangeSet:
    """Classify fresh items as new or updated relative to prior items.

    Items missing from the fresh list are not reported. Every output list
    keeps the order of ``fresh_items``.
    """
    prior_by_id = {item.id: item for item in prior_items}
    changes = ChangeSet()

    for item in fresh_items:
        previous = prior_by_id.get(item.id)
        if previous is None:
            changes.new_items.append(item)
            continue

        price_changed = (
            previous.price != item.price
            or previous.compare_at_price != item.compare_at_price
        )
        availability_changed = previous.available != item.available

        if price_changed:
            changes.price_changes.append(
                PriceChange(
                    item=item,
                    old_price=previous.price,
                    new_price=item.price,
                    old_compare_at_price=previous.compare_at_price,
                    new_compare_at_price=item.compare_at_price,
                )
            )
        if availability_changed:
            changes.availability_changes.append(
                AvailabilityChange(item=item, was=previous.available, is_=item.available)
            )
        if price_changed or availability_changed:
            changes.updated_items.append(item)

    return changes
