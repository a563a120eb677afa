"""
Tests for event recording queries.
"""

import pytest

from autocrud import SqlCrudEvents
from core.config import Settings
from core.errors import ErrorKind, MissingArgumentError

from crud_models import CreateBooking, CreateCountry


def test_get_events_for_model(event_executor, events, store):
    first = event_executor.create(CreateBooking(title="One")).id
    second = event_executor.create(CreateBooking(title="Two")).id
    event_executor.create(CreateCountry(code="NZ", name="New Zealand"))

    with store.open_connection() as conn:
        bookings = events.get_events(conn, "booking")
        countries = events.get_events(conn, "country")

    assert [e.model_id for e in bookings] == [str(first), str(second)]
    assert [e.urn for e in countries] == ["urn:country:NZ"]


def test_check_events_returns_ids_with_events(event_executor, events, store):
    first = event_executor.create(CreateBooking(title="One")).id
    event_executor.create(CreateBooking(title="Two"))

    with store.open_connection() as conn:
        found = events.check_events(conn, "booking", [first, 12345])

    assert found == [str(first)]


def test_get_events_requires_model(events, store):
    with store.open_connection() as conn:
        with pytest.raises(MissingArgumentError) as exc:
            events.get_events(conn, "")
    assert exc.value.kind is ErrorKind.MISSING_ARGUMENT
    assert exc.value.field == "model"


@pytest.mark.parametrize("model,ids,field", [("", [1], "model"), ("booking", [], "ids"), ("booking", None, "ids")])
def test_check_events_requires_model_and_ids(events, store, model, ids, field):
    with store.open_connection() as conn:
        with pytest.raises(MissingArgumentError) as exc:
            events.check_events(conn, model, ids)
    assert exc.value.field == field


def test_from_settings():
    assert SqlCrudEvents.from_settings(Settings(crud_events_enabled=False)) is None

    events = SqlCrudEvents.from_settings(Settings(crud_events_enabled=True, crud_event_table="audit_log"))
    assert events.table.name == "audit_log"
    assert events.model.primary_key.auto_increment
