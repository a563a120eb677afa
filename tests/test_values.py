"""
Tests for request value resolution and expression evaluation.
"""

import uuid
from datetime import datetime
from typing import Optional

import pytest
from pydantic import BaseModel

from autocrud import (
    AutoPopulate,
    BehaviorRegistry,
    ExpressionEvaluator,
    MetadataResolver,
    RequestContext,
    ValueResolver,
)
from core.errors import UnsupportedOperationError

from crud_models import (
    CreateBooking,
    PatchBooking,
    RescoreBooking,
    UpdateBooking,
    booking_table,
    country_table,
)


@pytest.fixture
def values(evaluator):
    return ValueResolver(evaluator)


@pytest.fixture
def admin():
    return RequestContext(user_auth_id="u-1", user_auth_name="admin", remote_ip="10.0.0.1")


def test_create_values_are_mapped_populated_and_filtered(resolver, values, admin):
    request = CreateBooking(title="Gig", comment="not stored")
    result = values.resolve(request, resolver.resolve(CreateBooking), admin)

    assert result["name"] == "Gig"
    assert "title" not in result
    assert "comment" not in result
    assert result["notes"] is None
    assert result["score"] == 0
    assert result["created_by"] == "admin"
    assert result["modified_by"] == "admin"
    assert isinstance(result["created_date"], datetime)
    assert result["row_version"] == 0


def test_patch_drops_default_values(resolver, values):
    request = PatchBooking(id=7, score=5)
    result = values.resolve(request, resolver.resolve(PatchBooking), RequestContext(), skip_defaults=True)

    assert result == {"id": 7, "score": 5, "row_version": 0}


def test_update_keeps_default_values(resolver, values):
    request = PatchBooking(id=7, score=5)
    result = values.resolve(request, resolver.resolve(PatchBooking), RequestContext())

    assert result["priority"] == 0
    assert result["name"] is None


def test_update_style_and_default_replacement(resolver, values):
    """Non-default style drops zero values; AutoDefault replaces them instead."""
    request = RescoreBooking(id=7, tenant_id=0)
    result = values.resolve(request, resolver.resolve(RescoreBooking), RequestContext())

    assert "score" not in result
    assert result["priority"] == 3
    # nullable field holding a zero value is a real value
    assert result["tenant_id"] == 0
    assert result["name"] == "rescored"


def test_default_replacement_wins_over_patch_removal(resolver, values):
    request = RescoreBooking(id=7)
    result = values.resolve(request, resolver.resolve(RescoreBooking), RequestContext(), skip_defaults=True)

    assert result["priority"] == 3
    assert "score" not in result


def test_populate_runs_after_removal(values):
    local = BehaviorRegistry()

    class StampBooking(BaseModel):
        id: int = 0
        notes: Optional[str] = None

    local.register(StampBooking, booking_table, fields={"notes": [AutoPopulate(value="stamped")]})
    meta = MetadataResolver(local).resolve(StampBooking)

    result = values.resolve(StampBooking(id=1), meta, RequestContext(), skip_defaults=True)
    assert result["notes"] == "stamped"


def test_populator_sees_resolved_values(values):
    local = BehaviorRegistry()
    seen = {}

    class NamedBooking(BaseModel):
        id: int = 0
        name: str

    def populator(resolved, request):
        seen["request"] = request
        resolved["notes"] = f"{request.name}!"

    local.register(NamedBooking, booking_table, populator=populator)
    meta = MetadataResolver(local).resolve(NamedBooking)

    request = NamedBooking(id=1, name="Gig")
    result = values.resolve(request, meta, RequestContext())
    assert result["notes"] == "Gig!"
    assert seen["request"] is request


def test_reset_zeroes_named_fields(resolver, values):
    request = UpdateBooking(id=1, name="Gig", notes="keep?", score=7, reset=["Notes", "Score"])
    result = values.resolve(request, resolver.resolve(UpdateBooking), RequestContext())

    assert result["notes"] is None
    assert result["score"] == 0
    assert result["name"] == "Gig"
    assert "reset" not in result


def test_reset_from_request_params(resolver, values):
    request = UpdateBooking(id=1, name="Gig", notes="n", score=7)
    context = RequestContext(params={"reset": "notes, score"})
    result = values.resolve(request, resolver.resolve(UpdateBooking), context)

    assert result["notes"] is None
    assert result["score"] == 0


@pytest.mark.parametrize("reset", [["id"], ["missing"]])
def test_reset_rejects_primary_key_and_unknown_fields(resolver, values, reset):
    request = UpdateBooking(id=1, name="Gig", reset=reset)

    with pytest.raises(UnsupportedOperationError) as exc:
        values.resolve(request, resolver.resolve(UpdateBooking), RequestContext())
    assert exc.value.field == reset[0]


def test_reset_must_name_fields(resolver, values):
    request = UpdateBooking(id=1, name="Gig")

    with pytest.raises(UnsupportedOperationError):
        values.resolve(request, resolver.resolve(UpdateBooking), RequestContext(params={"reset": 5}))


def test_supplied_row_version_is_kept(resolver, values):
    request = UpdateBooking(id=1, name="Gig", row_version=4)
    result = values.resolve(request, resolver.resolve(UpdateBooking), RequestContext())

    assert result["row_version"] == 4


def test_row_version_dropped_without_token_column(values):
    local = BehaviorRegistry()

    class RenameCountry(BaseModel):
        code: str
        name: str
        row_version: int = 0

    local.register(RenameCountry, country_table)
    meta = MetadataResolver(local).resolve(RenameCountry)

    result = values.resolve(RenameCountry(code="NZ", name="Aotearoa"), meta, RequestContext())
    assert result == {"code": "NZ", "name": "Aotearoa"}


def test_builtin_expressions(admin):
    evaluator = ExpressionEvaluator()

    assert evaluator.evaluate(AutoPopulate("x", eval="user_auth_id"), admin) == "u-1"
    assert evaluator.evaluate(AutoPopulate("x", eval="remote_ip"), admin) == "10.0.0.1"
    assert isinstance(evaluator.evaluate(AutoPopulate("x", eval="new_guid"), admin), uuid.UUID)
    assert evaluator.evaluate(AutoPopulate("x", value=5, eval=None), admin) == 5


def test_registered_expression_wins_over_value():
    evaluator = ExpressionEvaluator()
    evaluator.register("answer", lambda ctx: 42)

    assert evaluator.evaluate(AutoPopulate("x", value=1, eval="answer"), RequestContext()) == 42


def test_unknown_expression_is_unsupported():
    with pytest.raises(UnsupportedOperationError):
        ExpressionEvaluator().evaluate(AutoPopulate("x", eval="nope"), RequestContext())
