from __future__ import annotations

from datetime import UTC, datetime

import pytest

from content import items as item_service
from content.items import upsert_synced_item
from db.models import Item


def _item(session, **overrides) -> Item:
    data = {"type": "product", "title": "Widget", "source_url": "https://example.com/widget"}
    data.update(overrides)
    return item_service.create_item(session, data)


def test_create_item_defaults_and_tag_list(session) -> None:
    item = _item(session, tags=["python", "cli"])

    assert item.visible is True
    assert item.featured is False
    assert item.published_at is not None
    assert item.tags == "python,cli"
    assert item_service.serialize_item(item)["tag_list"] == ["python", "cli"]


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"type": "podcast"}, "Unsupported item type"),
        ({"title": "  "}, "title is required"),
        ({"source_url": ""}, "source_url is required"),
    ],
)
def test_create_item_rejects_invalid_input(session, overrides, message) -> None:
    with pytest.raises(ValueError, match=message):
        _item(session, **overrides)


@pytest.mark.parametrize("field", ["title", "source_url", "featured", "visible"])
def test_update_item_rejects_null_for_required_fields(session, field) -> None:
    item = _item(session, featured=True)

    with pytest.raises(ValueError, match=f"{field} must not be null"):
        item_service.update_item(session, item.id, {field: None})

    session.refresh(item)
    assert item.title == "Widget"
    assert item.featured is True
    assert item.visible is True


def test_list_items_orders_newest_first_with_undated_last(session) -> None:
    old = _item(session, title="old", published_at=datetime(2024, 1, 1, tzinfo=UTC))
    new = _item(session, title="new", published_at=datetime(2025, 6, 1, tzinfo=UTC))
    undated = _item(session, title="undated")
    item_service.update_item(session, undated.id, {"published_at": None})

    titles = [row.title for row in item_service.list_items(session, "product")]

    assert titles == [new.title, old.title, "undated"]


def test_list_items_hides_invisible_unless_asked(session) -> None:
    shown = _item(session, title="shown")
    hidden = _item(session, title="hidden", visible=False)

    public = item_service.list_items(session, "product")
    admin = item_service.list_items(session, "product", include_hidden=True)

    assert [row.id for row in public] == [shown.id]
    assert {row.id for row in admin} == {shown.id, hidden.id}


def test_featured_only_and_limit(session) -> None:
    _item(session, title="a", featured=True, published_at=datetime(2025, 1, 1, tzinfo=UTC))
    _item(session, title="b", featured=True, published_at=datetime(2025, 2, 1, tzinfo=UTC))
    _item(session, title="c", published_at=datetime(2025, 3, 1, tzinfo=UTC))

    rows = item_service.list_items(session, "product", featured_only=True, limit=1)

    assert [row.title for row in rows] == ["b"]


def test_update_item_missing_raises(session) -> None:
    with pytest.raises(item_service.ItemNotFoundError):
        item_service.update_item(session, 999, {"title": "x"})


def test_set_featured_and_visibility_toggle(session) -> None:
    item = _item(session)

    item_service.set_featured(session, item.id, True)
    item_service.set_visibility(session, item.id, False)
    session.refresh(item)

    assert item.featured is True
    assert item.visible is False


def test_delete_item(session) -> None:
    item = _item(session)

    assert item_service.delete_item(session, item.id) is True
    assert item_service.delete_item(session, item.id) is False
    assert item_service.get_item(session, item.id) is None


def test_upsert_synced_item_is_idempotent_and_keeps_curation(session) -> None:
    normalized = {
        "type": "github",
        "source_id": "1",
        "source_url": "https://github.com/someone/tool",
        "title": "tool",
        "description": "first",
        "tags": None,
        "image_url": None,
        "published_at": None,
    }
    item, created = upsert_synced_item(session, normalized, ("title", "description"))
    item_service.set_featured(session, item.id, True)

    again, created_again = upsert_synced_item(
        session, {**normalized, "description": "second"}, ("title", "description")
    )

    assert created is True
    assert created_again is False
    assert again.id == item.id
    assert again.description == "second"
    assert again.featured is True
    assert session.query(Item).count() == 1


def test_set_blurb_ignores_empty_values(session) -> None:
    item = _item(session, blurb="keep me")

    assert item_service.set_blurb(session, item.id, "") is False
    session.refresh(item)
    assert item.blurb == "keep me"
