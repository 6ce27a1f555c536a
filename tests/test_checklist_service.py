from __future__ import annotations

from decimal import Decimal

import pytest

from order_checklist.checklist.service import (
    CHECKLIST_TTL_SECONDS,
    ChecklistExtractionService,
    lookup_checklist,
    normalize_chat_messages,
    render_checklist_text,
    summarize_items,
)
from order_checklist.domain.models import Checklist, ChecklistItem, ChecklistRecord, RecordKind
from order_checklist.errors import NotFound, TransportFailure, ValidationFailure

from conftest import START_EPOCH, FakeModel


ITEMS = [
    {"name": "Apples", "quantity": 6, "price": 0.5},
    {"name": "Cheddar", "quantity": 1, "price": 4.25},
]


def _service(model, cache, db, clock) -> ChecklistExtractionService:
    return ChecklistExtractionService(model, cache, db, clock=clock, id_factory=lambda: "chk-1")


def test_extract_stores_checklist_in_cache_and_db(cache, db, clock, scheduler) -> None:
    model = FakeModel(items=ITEMS)
    svc = _service(model, cache, db, clock)

    result = svc.extract(["https://img.test/1.jpg", "https://img.test/2.jpg"])

    assert result.checklist_id == "chk-1"
    assert model.extract_calls == [["https://img.test/1.jpg", "https://img.test/2.jpg"]]
    assert result.to_dict() == {
        "checklistId": "chk-1",
        "items": [
            {"name": "Apples", "quantity": 6, "price": 0.5},
            {"name": "Cheddar", "quantity": 1, "price": 4.25},
        ],
    }

    record = cache.get("chk-1")
    assert isinstance(record, ChecklistRecord)
    assert record.kind is RecordKind.CHECKLIST
    assert record.checklist.expires_at == START_EPOCH + CHECKLIST_TTL_SECONDS
    assert scheduler.timers[0].delay == CHECKLIST_TTL_SECONDS

    stored = db.get_checklist("chk-1")
    assert stored.items == record.checklist.items


def test_extract_without_images_is_rejected(cache, db, clock) -> None:
    model = FakeModel(items=ITEMS)
    with pytest.raises(ValidationFailure):
        _service(model, cache, db, clock).extract([])
    assert model.extract_calls == []


def test_malformed_model_output_stores_nothing(cache, db, clock) -> None:
    model = FakeModel(items=[{"name": "Broken", "quantity": "many", "price": 1}])

    with pytest.raises(ValidationFailure):
        _service(model, cache, db, clock).extract(["https://img.test/1.jpg"])
    assert len(cache) == 0
    with pytest.raises(NotFound):
        db.get_checklist("chk-1")


def test_model_failure_propagates(cache, db, clock) -> None:
    model = FakeModel(error=TransportFailure("model unreachable"))

    with pytest.raises(TransportFailure):
        _service(model, cache, db, clock).extract(["https://img.test/1.jpg"])


def test_lookup_falls_back_to_db_after_cache_loss(cache, db, clock) -> None:
    svc = _service(FakeModel(items=ITEMS), cache, db, clock)
    svc.extract(["https://img.test/1.jpg"])

    cache.delete("chk-1")
    assert svc.get_checklist("chk-1").id == "chk-1"

    clock.advance(CHECKLIST_TTL_SECONDS)
    with pytest.raises(NotFound):
        svc.get_checklist("chk-1")


def test_lookup_without_db(cache) -> None:
    with pytest.raises(NotFound):
        lookup_checklist(cache, None, "missing")


def test_stream_chat_passes_role_and_content_only(cache, db, clock) -> None:
    model = FakeModel(fragments=["Hel", "lo"])
    svc = _service(model, cache, db, clock)

    out = list(svc.stream_chat([{"role": "user", "content": "Hi", "id": "m1", "timestamp": "t"}]))

    assert out == ["Hel", "lo"]
    assert model.chat_calls == [[{"role": "user", "content": "Hi"}]]


@pytest.mark.parametrize(
    "messages",
    [None, [], [{"role": "system", "content": "x"}], [{"role": "user"}], ["hi"]],
)
def test_normalize_chat_messages_rejects(messages) -> None:
    with pytest.raises(ValidationFailure):
        normalize_chat_messages(messages)


def test_summary_and_text_export() -> None:
    items = [
        ChecklistItem(name="Apples", quantity=6, price=Decimal("0.50")),
        ChecklistItem(name="Rice", quantity=1, price=Decimal("10")),
    ]

    assert summarize_items(items) == (
        "Found 2 items:\n\n"
        "1. Apples - Quantity: 6, Price: $0.5\n"
        "2. Rice - Quantity: 1, Price: $10"
    )
    checklist = Checklist(id="c", items=items, created_at=START_EPOCH, expires_at=START_EPOCH + 1)
    assert render_checklist_text(checklist) == (
        "1. Apples - Quantity: 6, Price: 0.5\n"
        "2. Rice - Quantity: 1, Price: 10"
    )
