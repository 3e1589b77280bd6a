"""
Tests for schema models.
"""

import json

import pytest
from pydantic import ValidationError

from docsync.schema.checkpoint import ReindexCheckpoint
from docsync.schema.events import ChangeEvent, ChangeVariant
from docsync.schema.storage import ListedObject, ObjectPage


def test_created_event_requires_fingerprint() -> None:
    with pytest.raises(ValidationError):
        ChangeEvent(variant=ChangeVariant.CREATED, collection_id="lib42", item_key="itemA")


def test_change_event_is_immutable() -> None:
    event = ChangeEvent.removed("lib42", "itemA")

    with pytest.raises(ValidationError):
        event.item_key = "itemB"


def test_distinct_items_never_share_a_document_id() -> None:
    ids = {
        ChangeEvent.removed("lib1", "item2").document_id,
        ChangeEvent.removed("lib12", "item").document_id,
        ChangeEvent.removed("lib1", "2item").document_id,
    }
    assert len(ids) == 3


def test_checkpoint_serializes_with_camel_case_keys() -> None:
    checkpoint = ReindexCheckpoint(collection_id="lib42").advance("lib42/itemJ", enqueued=10)

    data = json.loads(checkpoint.to_json_bytes())

    assert data["collectionId"] == "lib42"
    assert data["lastKey"] == "lib42/itemJ"
    assert data["pagesCompleted"] == 1
    assert data["keysEnqueued"] == 10
    assert ReindexCheckpoint.model_validate_json(checkpoint.to_json_bytes()) == checkpoint


def test_fresh_checkpoint_has_no_resume_key() -> None:
    assert ReindexCheckpoint(collection_id="lib42").last_key is None


def test_object_page_last_key() -> None:
    assert ObjectPage().last_key is None
    page = ObjectPage(objects=[ListedObject(key="a/1", etag="x"), ListedObject(key="a/2", etag="y")])
    assert page.last_key == "a/2"
