"""
FormStock Service — Response submission and deletion schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from formstock.schemas.questions import Answer


class ClaimRequest(BaseModel):
    item_id: str = Field(..., examples=["0b8c6f0e-…"])
    quantity: int = Field(1, ge=1)  # above the item's cap is clamped, not rejected


class ResponseSubmission(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_document: str = Field(..., min_length=1, max_length=255)
    customer_email: EmailStr
    representative_name: str = Field(..., min_length=1, max_length=255)
    representative_email: EmailStr
    gift_negotiated: str = Field(..., min_length=1, max_length=255)
    order_amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    notes: str | None = Field(None, max_length=5000)
    answers: list[Answer] = Field(default_factory=list)
    items: list[ClaimRequest] = Field(default_factory=list, max_length=200)


class GrantedClaim(BaseModel):
    item_id: str
    quantity: int


class SubmissionResponse(BaseModel):
    response_id: str
    items: list[GrantedClaim]


class DeleteResponsesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # shape is checked in delete_responses; anything but a list of ids is a 400
    response_ids: Any = Field(None, alias="responseIds")


class DeleteResponsesResult(BaseModel):
    success: bool = True
    deleted_response_ids: list[str]
    restored: dict[str, int]


class ResponseItemRead(BaseModel):
    id: str
    quantity: int
    item_id: str | None = None
    item_name: str | None = None
    item_price: float | None = None


class ResponseRead(BaseModel):
    id: str
    created_at: datetime | None = None
    customer_name: str
    customer_document: str
    customer_email: str
    representative_name: str
    representative_email: str
    gift_negotiated: str
    sale_amount: float
    notes: str | None = None
    answers: dict
    response_items: list[ResponseItemRead]
