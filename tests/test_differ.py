"""Tests for catalog change detection."""
from conftest import make_item
from shopwatch.catalog.differ import compare


def test_new_items_are_those_absent_from_prior():
    """Items with unseen ids are new, in fresh order."""
    prior = [make_item("2")]
    fresh = [make_item("3"), make_item("2"), make_item("1")]
    changes = compare(prior, fresh)
    assert [i.id for i in changes.new_items] == ["3", "1"]
    assert changes.updated_items == []


def test_unchanged_item_not_reported():
    """Identical price and availability produce no change."""
    changes = compare([make_item("1")], [make_item("1", title="Renamed")])
    assert changes.new_items == []
    assert changes.updated_items == []
    assert changes.price_changes == []
    assert changes.availability_changes == []
    assert not changes.has_changes()


def test_availability_change():
    """Unavailable to available is reported as a restock."""
    changes = compare([make_item("1", available=False)], [make_item("1", available=True)])
    assert [i.id for i in changes.updated_items] == ["1"]
    assert len(changes.availability_changes) == 1
    change = changes.availability_changes[0]
    assert change.item.id == "1"
    assert change.was is False
    assert change.is_ is True
    assert [i.id for i in changes.restocked_items] == ["1"]


def test_price_and_availability_change_listed_once():
    """An item with both changes appears once in updated_items."""
    changes = compare(
        [make_item("1", price=50, available=True)],
        [make_item("1", price=40, available=False)],
    )
    assert [i.id for i in changes.updated_items] == ["1"]
    assert changes.price_changes[0].old_price == 50
    assert changes.price_changes[0].new_price == 40
    assert len(changes.availability_changes) == 1
    assert changes.restocked_items == []


def test_compare_at_price_change_is_price_change():
    """A compare-at change alone counts as a price change."""
    changes = compare(
        [make_item("1", compare_at_price=80.0)],
        [make_item("1", compare_at_price=70.0)],
    )
    assert len(changes.price_changes) == 1
    assert changes.price_changes[0].old_compare_at_price == 80.0
    assert changes.price_changes[0].new_compare_at_price == 70.0


def test_removed_items_not_reported():
    """Items missing from the fresh fetch are ignored."""
    changes = compare([make_item("1"), make_item("2")], [make_item("1")])
    assert not changes.has_changes()


def test_empty_inputs():
    """Comparing nothing yields an empty change set."""
    changes = compare([], [])
    assert changes.new_items == []
    assert not changes.has_changes()
