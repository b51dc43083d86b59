"""
ORM-level append-only enforcement for cost layers and COGS records.

Every write below goes straight through the ORM, bypassing the layer
store and recorder, to prove the listeners catch it at flush.
"""

from decimal import Decimal

import pytest

from cogs_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from cogs_kernel.exceptions import ImmutabilityViolationError, InvariantViolationError
from cogs_kernel.models.cogs_record import CogsRecordModel
from cogs_kernel.models.cost_layer import CostLayerModel


@pytest.fixture
def layer_row(session, make_layer):
    layer = make_layer("SKU-1", 10, 4)
    return session.get(CostLayerModel, layer.layer_id)


class TestCostLayerRules:

    @pytest.mark.parametrize("field,value", [
        ("unit_cost", Decimal("5")),
        ("original_quantity", Decimal("11")),
        ("product_id", "SKU-2"),
    ])
    def test_structural_fields_frozen(self, session, layer_row, field, value):
        setattr(layer_row, field, value)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "CostLayer"

    def test_remaining_cannot_grow(self, session, layer_row):
        layer_row.remaining_quantity = Decimal("4")
        session.commit()

        layer_row.remaining_quantity = Decimal("5")
        with pytest.raises(InvariantViolationError) as exc_info:
            session.flush()

        assert exc_info.value.invariant == "remaining_only_decreases"

    def test_status_must_follow_quantity(self, session, layer_row):
        layer_row.remaining_quantity = Decimal("0")

        with pytest.raises(InvariantViolationError) as exc_info:
            session.flush()

        assert exc_info.value.invariant == "status_matches_quantity"

    def test_valid_draw_down_allowed(self, session, layer_row):
        layer_row.remaining_quantity = Decimal("0")
        layer_row.status = "depleted"
        session.commit()

        assert layer_row.version == 2

    def test_delete_blocked(self, session, layer_row, captured_logs):
        session.delete(layer_row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "DELETE"


class TestCogsRecordRules:

    @pytest.fixture
    def record_row(self, session, recorder, make_layer):
        make_layer("SKU-1", 10, 4)
        record = recorder.record_cogs("SKU-1", Decimal("2"))
        return session.get(CogsRecordModel, record.record_id)

    def test_update_blocked(self, session, record_row):
        record_row.sale_ref = "EDITED"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, record_row):
        session.delete(record_row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestRegistration:

    def test_registration_is_idempotent(self, session, layer_row):
        register_immutability_listeners()
        register_immutability_listeners()
        layer_row.unit_cost = Decimal("5")

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_unregister_then_register(self, session, layer_row):
        unregister_immutability_listeners()
        try:
            layer_row.unit_cost = Decimal("4.5")
            session.commit()
        finally:
            register_immutability_listeners()

        layer_row.unit_cost = Decimal("5")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
