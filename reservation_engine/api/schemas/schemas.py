from typing import Literal
from pydantic import BaseModel, Field


class SellableUnitCreate(BaseModel):
    tier_name: str = Field(min_length=1)
    section: str | None = None
    row: str | None = None
    seat_label: str | None = None
    total_quantity: int = Field(ge=1)
    unit_price: int = Field(ge=0)
    currency: str = "USD"


class EventCreate(BaseModel):
    title: str
    venue: str
    starts_at: str
    units: list[SellableUnitCreate] = Field(min_length=1)


class SellableUnitResponse(BaseModel):
    id: str
    event_id: str
    tier_id: str
    tier_name: str
    section: str
    row: str | None = None
    seat_label: str | None = None
    total_quantity: int
    unit_price: int
    currency: str


class EventResponse(BaseModel):
    id: str
    title: str
    venue: str
    starts_at: str
    units: list[SellableUnitResponse]


class TierSummaryResponse(BaseModel):
    tier_id: str
    tier_name: str
    min_price: int
    max_price: int
    unit_count: int
    total_quantity: int
    sections: list[str]


class UnitAvailabilityResponse(BaseModel):
    unit_id: str
    total_quantity: int
    held_quantity: int
    available_quantity: int
    unit_price: int


class SectionAvailabilityResponse(BaseModel):
    section: str
    available_quantity: int
    unit_ids: list[str]


class TierAvailabilityResponse(BaseModel):
    tier_id: str
    tier_name: str
    total_quantity: int
    available_quantity: int
    min_price: int | None = None
    max_price: int | None = None
    sections: list[SectionAvailabilityResponse]


class HoldRequest(BaseModel):
    unit_id: str
    owner_id: str
    # Validated by the reservation manager so the error kind is uniform.
    quantity: int


class SeatSelection(BaseModel):
    unit_id: str
    quantity: int


class BatchHoldRequest(BaseModel):
    owner_id: str
    selections: list[SeatSelection]


class HoldActionRequest(BaseModel):
    owner_id: str


class ReleaseOwnerHoldsRequest(BaseModel):
    owner_id: str
    hold_ids: list[str] | None = None


class HoldResponse(BaseModel):
    hold_id: str
    unit_id: str
    owner_id: str
    quantity: int
    status: str
    batch_id: str | None = None
    created_at: str
    expires_at: str
    finalized_at: str | None = None


class BatchHoldResponse(BaseModel):
    holds: list[HoldResponse]
    expires_at: str
    message: str


class ReleaseOwnerHoldsResponse(BaseModel):
    released_count: int
    holds: list[HoldResponse]
    message: str


class ReapResponse(BaseModel):
    reaped_count: int


class PaymentSignalRequest(BaseModel):
    provider: str
    payment_id: str
    event_type: Literal["payment.completed", "payment.failed", "payment.abandoned"]
    hold_id: str
    owner_id: str
