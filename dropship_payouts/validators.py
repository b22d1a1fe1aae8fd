from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import date
from typing import Optional, List
from decimal import Decimal

from dropship_payouts.engine.rates import ChargingPolicy
from dropship_payouts.engine.scheduler import Frequency
from dropship_payouts.engine.status import parse_return_label


def _check_email(v):
    if v is None:
        return v
    v = v.strip()
    if not v or v.lower() == 'all':
        return None
    if '@' not in v or v.startswith('@') or v.endswith('@'):
        raise ValueError(f"'{v}' is not a dropshipper email")
    return v.lower()


def _check_range(start, end, label):
    if start and end and start > end:
        raise ValueError(f"{label} 'from' must not be after 'to'")


class PayoutRequestValidator(BaseModel):
    order_date_from: date
    order_date_to: date
    delivered_date_from: date
    delivered_date_to: date
    dropshipper_email: Optional[str] = None
    charging_policy: Optional[ChargingPolicy] = None

    @field_validator('dropshipper_email')
    @classmethod
    def validate_dropshipper_email(cls, v):
        return _check_email(v)

    @field_validator('charging_policy', mode='before')
    @classmethod
    def validate_charging_policy(cls, v):
        return ChargingPolicy.parse(v) if v else None

    @model_validator(mode='after')
    def validate_ranges(self):
        _check_range(self.order_date_from, self.order_date_to, 'Order date')
        _check_range(self.delivered_date_from, self.delivered_date_to, 'Delivered date')
        return self


class ProductPriceValidator(BaseModel):
    dropshipper_email: str
    product_uid: str = Field(min_length=1)
    product_name: Optional[str] = None
    sku: Optional[str] = None
    product_weight: Optional[Decimal] = Field(default=None, ge=0)
    product_cost_per_unit: Decimal = Field(ge=0)
    currency: str = 'INR'

    @field_validator('dropshipper_email')
    @classmethod
    def validate_dropshipper_email(cls, v):
        v = _check_email(v)
        if v is None:
            raise ValueError('dropshipper_email is required')
        return v


class ShippingRateValidator(BaseModel):
    product_uid: str = Field(min_length=1)
    product_weight: Decimal = Field(ge=0)
    shipping_provider: str = Field(min_length=1)
    rate: Decimal = Field(ge=0)
    currency: str = 'INR'


class DefaultShippingRateValidator(BaseModel):
    shipping_provider: str = Field(min_length=1)
    rate: Decimal = Field(ge=0)
    currency: str = 'INR'


class OrderValidator(BaseModel):
    order_id: str = Field(min_length=1)
    dropshipper_email: str
    order_date: date
    waybill: Optional[str] = None
    product_name: Optional[str] = None
    sku: Optional[str] = None
    product_uid: Optional[str] = None
    qty: int = Field(ge=0)
    product_value: Decimal = Decimal('0')
    mode: Optional[str] = None
    status: str
    delivered_date: Optional[date] = None
    rts_date: Optional[date] = None
    shipping_provider: str
    pincode: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None

    @field_validator('dropshipper_email')
    @classmethod
    def validate_dropshipper_email(cls, v):
        v = _check_email(v)
        if v is None:
            raise ValueError('dropshipper_email is required')
        return v

    @model_validator(mode='after')
    def validate_product_key(self):
        if not (self.product_uid or self.sku or self.product_name):
            raise ValueError('one of product_uid, sku or product_name is required')
        return self


class OrderBatchValidator(BaseModel):
    upload_session_id: str = Field(min_length=1)
    orders: List[OrderValidator]


class ReconcileValidator(BaseModel):
    order_id: str = Field(min_length=1)
    dropshipper_email: str
    reversal_amount: Decimal = Field(ge=0)
    product_uid: Optional[str] = None
    waybill: Optional[str] = None
    rts_rto_status: Optional[str] = None
    rts_rto_date: Optional[date] = None
    reconciled_by: Optional[str] = None
    notes: Optional[str] = None
    original_payout_id: Optional[str] = None
    allow_duplicate: bool = False

    @field_validator('dropshipper_email')
    @classmethod
    def validate_dropshipper_email(cls, v):
        v = _check_email(v)
        if v is None:
            raise ValueError('dropshipper_email is required')
        return v

    @field_validator('rts_rto_status')
    @classmethod
    def validate_rts_rto_status(cls, v):
        if v:
            return parse_return_label(v).label
        return v


class AutoDetectValidator(BaseModel):
    order_date_from: date
    order_date_to: date
    dropshipper_email: Optional[str] = None

    @field_validator('dropshipper_email')
    @classmethod
    def validate_dropshipper_email(cls, v):
        return _check_email(v)

    @model_validator(mode='after')
    def validate_range(self):
        _check_range(self.order_date_from, self.order_date_to, 'Order date')
        return self


class SettlementSettingsValidator(BaseModel):
    # Anchors are not accepted here
    model_config = ConfigDict(extra='forbid')

    frequency: Frequency
    cutoff_offset_days: int = Field(default=2, ge=0, le=31)
    anchored: bool = True
    custom_weekdays: List[int] = []
    expected_version: Optional[int] = Field(default=None, ge=0)

    @field_validator('custom_weekdays')
    @classmethod
    def validate_custom_weekdays(cls, v):
        if any(day < 0 or day > 6 for day in v):
            raise ValueError('custom_weekdays must be 0 (Monday) to 6 (Sunday)')
        return sorted(set(v))

    @model_validator(mode='after')
    def validate_custom(self):
        if self.frequency is Frequency.CUSTOM and not self.custom_weekdays:
            raise ValueError('custom frequency requires custom_weekdays')
        return self


class SettlementRunsValidator(BaseModel):
    frequency: Frequency
    cutoff_offset_days: int = Field(default=2, ge=0, le=31)
    anchored: bool = False
    range_from: date
    range_to: date
    dropshipper_email: Optional[str] = None
    custom_weekdays: List[int] = []
    charging_policy: Optional[ChargingPolicy] = None
    format: str = 'json'

    @field_validator('dropshipper_email')
    @classmethod
    def validate_dropshipper_email(cls, v):
        return _check_email(v)

    @field_validator('charging_policy', mode='before')
    @classmethod
    def validate_charging_policy(cls, v):
        return ChargingPolicy.parse(v) if v else None

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v not in ['json', 'excel']:
            raise ValueError('format must be either json or excel')
        return v

    @model_validator(mode='after')
    def validate_range(self):
        _check_range(self.range_from, self.range_to, 'Range')
        if self.frequency is Frequency.CUSTOM and not self.custom_weekdays:
            raise ValueError('custom frequency requires custom_weekdays')
        return self


class SettlementExportValidator(BaseModel):
    run_date: date
    dropshipper_email: Optional[str] = None
    charging_policy: Optional[ChargingPolicy] = None

    @field_validator('dropshipper_email')
    @classmethod
    def validate_dropshipper_email(cls, v):
        return _check_email(v)

    @field_validator('charging_policy', mode='before')
    @classmethod
    def validate_charging_policy(cls, v):
        return ChargingPolicy.parse(v) if v else None
