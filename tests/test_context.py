"""
Tests for response accessors and their value conversion.
"""

import uuid
from typing import Optional

from autocrud.context import FieldAccessor, ResponseAccessors, _adapter

from crud_models import BookingRow, CountResponse, DocumentResponse, EmptyResponse, ResultResponse


def test_accessors_found_by_name():
    accessors = ResponseAccessors.for_type(ResultResponse)

    assert accessors.id.name == "id"
    assert accessors.result.annotation == Optional[BookingRow]
    assert accessors.count is None
    assert not ResponseAccessors.for_type(EmptyResponse)
    assert not ResponseAccessors.for_type(None)


def test_convert_to_field_type():
    assert FieldAccessor("count", Optional[int]).convert("5") == 5
    assert FieldAccessor("id", Optional[str]).convert(12) == "12"
    assert FieldAccessor("id", Optional[int]).convert(None) is None

    key = uuid.uuid4()
    assert ResponseAccessors.for_type(DocumentResponse).id.convert(str(key)) == key


def test_type_adapter_built_once_per_annotation():
    first = ResponseAccessors.for_type(CountResponse).count
    second = ResponseAccessors.for_type(CountResponse).count
    first.convert(1)
    misses = _adapter.cache_info().misses

    second.convert(2)
    second.convert(3)

    assert _adapter.cache_info().misses == misses
    assert _adapter(Optional[int]) is _adapter(Optional[int])
