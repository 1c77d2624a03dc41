"""Unit tests for the invoice extraction schema and payload sanitation."""

import pytest
from pydantic import ValidationError

from app.schemas.invoice_extraction import (
    ExtraField,
    ExtraFieldCategory,
    InvoiceExtraction,
    LineItem,
    LineItemType,
    Service,
    coerce_nulls,
    sanitize_payload,
    unwrap_single,
)


class TestPayloadSanitation:
    """Null coercion and array unwrapping before validation."""

    def test_nested_nulls_are_dropped(self):
        payload = {
            "shop_name": None,
            "services": [
                {"service_name": None, "line_items": [{"name": None, "quantity": None}, None]},
            ],
        }

        cleaned = coerce_nulls(payload)

        assert cleaned == {"services": [{"line_items": [{}]}]}

    def test_null_fields_take_schema_defaults(self):
        payload = sanitize_payload(
            {
                "shop_name": None,
                "services": [{"service_name": None, "line_items": [{"name": None, "quantity": None}]}],
            }
        )

        result = InvoiceExtraction.model_validate(payload)

        assert result.shop_name is None
        assert result.services[0].service_name == "General Service"
        assert result.services[0].line_items[0].name == "Unknown"
        assert result.services[0].line_items[0].quantity == 1

    def test_single_element_array_is_unwrapped(self):
        assert unwrap_single([{"invoice_number": "A1"}]) == {"invoice_number": "A1"}

    def test_multi_element_array_is_left_alone(self):
        value = [{"a": 1}, {"b": 2}]
        assert unwrap_single(value) is value


class TestEnumFallbacks:
    """Invented categories never fail a document."""

    def test_unknown_item_type_falls_back(self):
        item = LineItem.model_validate({"name": "Brake job", "item_type": "brakes"})
        assert item.item_type == LineItemType.UNKNOWN

    def test_item_type_is_normalized(self):
        item = LineItem.model_validate({"name": "Shop rags", "item_type": "Shop Supply"})
        assert item.item_type == LineItemType.SHOP_SUPPLY

    def test_non_string_item_type_falls_back(self):
        item = LineItem.model_validate({"item_type": 42})
        assert item.item_type == LineItemType.UNKNOWN

    def test_unknown_extra_category_falls_back_to_misc(self):
        extra = ExtraField.model_validate({"field_name": "fleet_po", "field_value": "PO-1", "field_category": "purchasing"})
        assert extra.field_category == ExtraFieldCategory.MISC


class TestExtraFieldValues:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (True, "true"),
            (False, "false"),
            (12.5, "12.5"),
            ({"a": 1}, '{"a": 1}'),
            ([1, 2], "[1, 2]"),
            (None, ""),
        ],
    )
    def test_field_value_is_stringified(self, raw, expected):
        extra = ExtraField.model_validate({"field_name": "x", "field_value": raw})
        assert extra.field_value == expected

    def test_field_value_defaults_to_empty(self):
        assert ExtraField.model_validate({"field_name": "x"}).field_value == ""


class TestInvoiceExtraction:
    def test_defaults(self):
        result = InvoiceExtraction.model_validate({})

        assert result.is_valid_invoice is True
        assert result.parse_confidence == 0.5
        assert result.services == []
        assert result.extras == []

    def test_numbers_are_accepted_in_string_fields(self):
        result = InvoiceExtraction.model_validate({"vehicle_year": 2019, "invoice_number": 48211})

        assert result.vehicle_year == "2019"
        assert result.invoice_number == "48211"

    def test_unknown_keys_are_ignored(self):
        result = InvoiceExtraction.model_validate({"invoice_number": "A1", "favorite_color": "blue"})
        assert not hasattr(result, "favorite_color")

    def test_confidence_out_of_range_is_rejected(self):
        with pytest.raises(ValidationError):
            InvoiceExtraction.model_validate({"parse_confidence": 1.7})

    def test_storage_dict_omits_absent_fields(self):
        result = InvoiceExtraction.model_validate({"invoice_number": "A1", "grand_total": 10.5})
        stored = result.to_storage_dict()

        assert stored["invoice_number"] == "A1"
        assert stored["grand_total"] == 10.5
        assert "shop_name" not in stored


class TestServiceNarrative:
    def test_joins_present_parts(self):
        service = Service(complaint="Noise", cause=None, correction="Replaced pads")
        assert service.narrative() == "Noise\nReplaced pads"

    def test_empty_when_no_parts(self):
        assert Service(service_name="Oil change").narrative() == ""
