import math
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

_INACTIVE_STATUSES = {"PRODUCT_INACTIVE", "INACTIVE", "DISCONTINUED"}


def _finite(value) -> float:
    try:
        number = float(value)
    except TypeError as exc:
        raise ValueError("expected a number") from exc
    if not math.isfinite(number):
        raise ValueError("number must be finite")
    return number


def _coerce_int(value):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    return int(round(_finite(value)))


def _coerce_float(value):
    if value is None or value == "":
        return None
    return _finite(value)


class ExternalRecord(BaseModel):
    """One product row as returned by the external inventory API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sku: str = Field(validation_alias=AliasChoices("productSku", "sku", "productId"))
    product_name: str = Field("", validation_alias=AliasChoices("productName", "product_name", "name"))
    current_stock: int = Field(
        0,
        validation_alias=AliasChoices("quantityOnHand", "quantityAvailable", "current_stock", "stock"),
    )
    reorder_point: int = Field(0, validation_alias=AliasChoices("reorderPoint", "reorderLevel", "reorder_point"))
    reorder_quantity: int = Field(0, validation_alias=AliasChoices("reorderQuantity", "reorder_quantity"))
    unit_cost: float = Field(0.0, validation_alias=AliasChoices("averageCost", "unitCost", "unit_cost", "cost"))
    lead_time_days: Optional[int] = Field(None, validation_alias=AliasChoices("leadTimeDays", "lead_time_days"))
    vendor_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("primarySupplierId", "supplierPartyId", "vendor_id"),
    )
    vendor_name: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("primarySupplierName", "vendor_name", "vendor"),
    )
    sales_velocity_30d: Optional[float] = Field(
        None,
        validation_alias=AliasChoices("salesVelocity30d", "sales_velocity_30d"),
    )
    sales_velocity_90d: Optional[float] = Field(
        None,
        validation_alias=AliasChoices("salesVelocity90d", "sales_velocity_90d"),
    )
    active: bool = True
    last_modified: Optional[datetime] = Field(
        None,
        validation_alias=AliasChoices("lastModifiedDate", "last_modified"),
    )

    @model_validator(mode="before")
    @classmethod
    def _derive_fields(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        status = data.get("statusId")
        if status is not None and "active" not in data:
            data["active"] = str(status).strip().upper() not in _INACTIVE_STATUSES
        # Raw sales totals arrive instead of velocities on some report endpoints.
        for window, total_key, velocity_key in (
            (30, "sales_last_30_days", "sales_velocity_30d"),
            (90, "sales_last_90_days", "sales_velocity_90d"),
        ):
            total = data.get(total_key)
            if total not in (None, "") and data.get(velocity_key) is None:
                data[velocity_key] = float(total) / window
        return data

    @field_validator("sku", mode="before")
    @classmethod
    def _strip_sku(cls, value) -> str:
        value = "" if value is None else str(value).strip()
        if not value:
            raise ValueError("sku is required")
        return value

    @field_validator("current_stock", "reorder_point", "reorder_quantity", mode="before")
    @classmethod
    def _to_int(cls, value):
        coerced = _coerce_int(value)
        return 0 if coerced is None else coerced

    @field_validator("lead_time_days", mode="before")
    @classmethod
    def _to_optional_int(cls, value):
        return _coerce_int(value)

    @field_validator("unit_cost", mode="before")
    @classmethod
    def _to_float(cls, value):
        coerced = _coerce_float(value)
        return 0.0 if coerced is None else coerced

    @field_validator("sales_velocity_30d", "sales_velocity_90d", mode="before")
    @classmethod
    def _to_optional_float(cls, value):
        return _coerce_float(value)

    @field_validator("vendor_id", "vendor_name", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value or None


class ExternalVendor(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    vendor_id: str = Field(validation_alias=AliasChoices("partyId", "vendorId", "vendor_id", "id"))
    name: str = Field(validation_alias=AliasChoices("partyName", "vendorName", "name"))
    contact_name: Optional[str] = Field(None, validation_alias=AliasChoices("contactName", "contact_name"))
    email: Optional[str] = None
    phone: Optional[str] = None
    lead_time_days: Optional[int] = Field(None, validation_alias=AliasChoices("leadTimeDays", "lead_time_days"))
    active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _derive_active(cls, data):
        if isinstance(data, dict) and "active" not in data and data.get("statusId") is not None:
            data = dict(data)
            data["active"] = str(data["statusId"]).strip().upper() != "INACTIVE"
        return data

    @field_validator("vendor_id", mode="before")
    @classmethod
    def _vendor_id_text(cls, value):
        return str(value).strip() if value is not None else value

    @field_validator("lead_time_days", mode="before")
    @classmethod
    def _to_optional_int(cls, value):
        return _coerce_int(value)
