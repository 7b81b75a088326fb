"""
FormStock Service — Form and item schemas
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from formstock.schemas.questions import CustomQuestion


class ItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    price: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    initial_stock: int = Field(..., ge=0)
    max_per_response: int = Field(1, ge=1)
    is_active: bool = True


class ItemUpdate(BaseModel):
    """Owner edit. Setting current_stock raises initial_stock to match when needed."""
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    price: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    initial_stock: int | None = Field(None, ge=0)
    current_stock: int | None = Field(None, ge=0)
    max_per_response: int | None = Field(None, ge=1)
    is_active: bool | None = None


class ItemRead(BaseModel):
    id: str
    name: str
    description: str | None = None
    price: float
    initial_stock: int
    current_stock: int
    max_per_response: int
    is_active: bool

    model_config = {"from_attributes": True}


class PublicItemRead(BaseModel):
    id: str
    name: str
    description: str | None = None
    price: float
    current_stock: int
    max_per_response: int
    max_claimable: int


class FormCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    is_active: bool = True
    is_public: bool = True
    custom_questions: list[CustomQuestion] = Field(default_factory=list)
    items: list[ItemCreate] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unique_question_ids(self):
        ids = [q.id for q in self.custom_questions]
        if len(ids) != len(set(ids)):
            raise ValueError("custom question ids must be unique")
        return self


class FormUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    is_active: bool | None = None
    is_public: bool | None = None
    custom_questions: list[CustomQuestion] | None = None


class FormRead(BaseModel):
    id: str
    owner_id: str
    title: str
    description: str | None = None
    is_active: bool
    is_public: bool
    custom_questions: list[CustomQuestion]
    created_at: datetime | None = None
    items: list[ItemRead] = []

    model_config = {"from_attributes": True}


class FormSummary(BaseModel):
    id: str
    title: str
    is_active: bool
    is_public: bool
    created_at: datetime | None = None
    response_count: int


class PublicFormRead(BaseModel):
    id: str
    title: str
    description: str | None = None
    custom_questions: list[CustomQuestion]
    order_amount: float
    items: list[PublicItemRead]


class RequestedItem(BaseModel):
    item_id: str
    name: str
    quantity: int


class RecentResponse(BaseModel):
    id: str
    created_at: datetime | None = None
    customer_name: str
    order_amount: float


class AnalyticsRead(BaseModel):
    form_id: str
    total_responses: int
    total_items: int
    total_stock_used: int
    total_sales_amount: float
    most_requested_items: list[RequestedItem]
    recent_responses: list[RecentResponse]
