"""
Invoice extraction schema.

Model output is handled in two stages. ``sanitize_payload`` turns the raw
JSON into a loosely-typed value (single-element array unwrapped, explicit
nulls dropped), then ``InvoiceExtraction`` validates it strictly. Enum
fields have explicit fallback arms so an invented category never fails a
whole document.
"""

import json
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Enums
class LineItemType(str, Enum):
    """Closed set of line-item categories."""
    LABOR = "labor"
    PART = "part"
    FEE = "fee"
    SHOP_SUPPLY = "shop_supply"
    HAZMAT = "hazmat"
    ENVIRONMENTAL = "environmental"
    SUBLET = "sublet"
    TIRE = "tire"
    FLUID = "fluid"
    FILTER = "filter"
    DISCOUNT = "discount"
    TAX = "tax"
    MISC = "misc"
    UNKNOWN = "unknown"


class ExtraFieldCategory(str, Enum):
    """Buckets for data that has no dedicated schema field."""
    SHOP = "shop"
    VEHICLE = "vehicle"
    CUSTOMER = "customer"
    FINANCIAL = "financial"
    SERVICE = "service"
    MISC = "misc"


def _coerce_enum(value: Any, enum_cls: type[Enum], fallback: Enum) -> Any:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        for member in enum_cls:
            if member.value == normalized:
                return member
    return fallback


class _ExtractionModel(BaseModel):
    """Common config: unknown keys are dropped, numbers may land in string fields."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class LineItem(_ExtractionModel):
    """A billed line within a service."""

    item_type: LineItemType = LineItemType.UNKNOWN
    name: str = "Unknown"
    description: Optional[str] = None
    quantity: float = 1
    unit_price: Optional[float] = None
    total_price: Optional[float] = None

    # Parts
    part_number: Optional[str] = None
    brand: Optional[str] = None
    is_oem: Optional[bool] = None
    is_aftermarket: Optional[bool] = None
    is_used: Optional[bool] = None
    is_remanufactured: Optional[bool] = None
    source: Optional[str] = None

    # Labor
    hours: Optional[float] = None
    rate_per_hour: Optional[float] = None
    labor_type: Optional[str] = None
    technician: Optional[str] = None
    completion_date: Optional[str] = None

    # Tires
    tire_size: Optional[str] = None
    tire_brand: Optional[str] = None
    tire_model: Optional[str] = None
    tire_position: Optional[str] = None

    # Fluids
    fluid_type: Optional[str] = None
    fluid_quantity: Optional[float] = None
    fluid_unit: Optional[str] = None

    operation_type: Optional[str] = None
    repair_area: Optional[str] = None
    is_sublet: bool = False
    sublet_vendor: Optional[str] = None
    sort_order: Optional[int] = None

    @field_validator("item_type", mode="before")
    @classmethod
    def _fallback_item_type(cls, value: Any) -> Any:
        return _coerce_enum(value, LineItemType, LineItemType.UNKNOWN)


class Service(_ExtractionModel):
    """A job performed on the vehicle, with its complaint/cause/correction narrative."""

    service_name: str = "General Service"
    service_description: Optional[str] = None
    service_code: Optional[str] = None
    complaint: Optional[str] = None
    cause: Optional[str] = None
    correction: Optional[str] = None
    is_approved: Optional[bool] = None
    is_recommended: Optional[bool] = None
    is_declined: Optional[bool] = None
    completion_date: Optional[str] = None
    service_subtotal: Optional[float] = None
    line_items: List[LineItem] = Field(default_factory=list)
    sort_order: Optional[int] = None

    def narrative(self) -> str:
        """Non-empty complaint, cause and correction joined by newlines."""
        parts = [self.complaint, self.cause, self.correction]
        return "\n".join(part for part in parts if part)


class ExtraField(_ExtractionModel):
    """Catch-all for values that don't fit the schema."""

    field_name: str
    field_value: str = ""
    field_category: ExtraFieldCategory = ExtraFieldCategory.MISC

    @field_validator("field_value", mode="before")
    @classmethod
    def _stringify_value(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        if value is None:
            return ""
        return str(value)

    @field_validator("field_category", mode="before")
    @classmethod
    def _fallback_category(cls, value: Any) -> Any:
        return _coerce_enum(value, ExtraFieldCategory, ExtraFieldCategory.MISC)


class InvoiceExtraction(_ExtractionModel):
    """Structured extraction of one repair invoice. Money is in decimal dollars."""

    # Document identifiers
    invoice_number: Optional[str] = None
    work_order_number: Optional[str] = None
    repair_order_number: Optional[str] = None
    purchase_order_number: Optional[str] = None
    estimate_number: Optional[str] = None
    authorization_number: Optional[str] = None

    # Dates (raw strings; parsed at persistence time)
    invoice_date: Optional[str] = None
    estimate_date: Optional[str] = None
    due_date: Optional[str] = None
    promise_date: Optional[str] = None
    date_in: Optional[str] = None
    date_out: Optional[str] = None

    # Shop
    shop_name: Optional[str] = None
    shop_address: Optional[str] = None
    shop_city: Optional[str] = None
    shop_state: Optional[str] = None
    shop_zip: Optional[str] = None
    shop_phone: Optional[str] = None
    shop_email: Optional[str] = None
    shop_website: Optional[str] = None
    shop_tax_id: Optional[str] = None
    shop_license_number: Optional[str] = None
    service_advisor: Optional[str] = None

    # Customer
    customer_name: Optional[str] = None
    customer_company: Optional[str] = None
    customer_address: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    customer_account_number: Optional[str] = None
    bill_to: Optional[str] = None
    ship_to: Optional[str] = None
    remit_to: Optional[str] = None

    # Vehicle
    vehicle_vin: Optional[str] = None
    vehicle_year: Optional[str] = None
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_submodel: Optional[str] = None
    vehicle_engine: Optional[str] = None
    vehicle_color: Optional[str] = None
    vehicle_license_plate: Optional[str] = None
    vehicle_unit_number: Optional[str] = None
    mileage_in: Optional[float] = None
    mileage_out: Optional[float] = None

    # Totals
    subtotal: Optional[float] = None
    labor_total: Optional[float] = None
    parts_total: Optional[float] = None
    fees_total: Optional[float] = None
    shop_supplies_total: Optional[float] = None
    hazmat_total: Optional[float] = None
    environmental_total: Optional[float] = None
    discount_amount: Optional[float] = None
    discount_percent: Optional[float] = None
    tax_amount: Optional[float] = None
    tax_rate: Optional[float] = None
    grand_total: Optional[float] = None
    balance_due: Optional[float] = None
    amount_paid: Optional[float] = None

    # Payment and approval
    payment_terms: Optional[str] = None
    payment_method: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    customer_signature_present: Optional[bool] = None

    # Free text
    warranty_text: Optional[str] = None
    terms_text: Optional[str] = None
    notes: Optional[str] = None

    services: List[Service] = Field(default_factory=list)
    extras: List[ExtraField] = Field(default_factory=list)
    raw_text: Optional[str] = None

    is_valid_invoice: bool = True
    parse_confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    def to_storage_dict(self) -> dict[str, Any]:
        """JSON-safe dict with absent fields omitted."""
        return self.model_dump(mode="json", exclude_none=True)


def coerce_nulls(value: Any) -> Any:
    """Recursively drop null values so they read as absent fields."""
    if isinstance(value, dict):
        return {key: coerce_nulls(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [coerce_nulls(item) for item in value if item is not None]
    return value


def unwrap_single(value: Any) -> Any:
    """Some models wrap the result object in a one-element array."""
    if isinstance(value, list) and len(value) == 1:
        return value[0]
    return value


def sanitize_payload(value: Any) -> Any:
    """Sanitation stage applied to parsed JSON before validation."""
    return coerce_nulls(unwrap_single(value))
