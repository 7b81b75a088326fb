"""
FormStock Service — Database models

[CONFIG DATA]        forms, form_items: owned and edited by the form owner
[TRANSACTIONAL DATA] form_responses, response_items: written by respondents
"""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formstock.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Form(Base):
    """
    [CONFIG DATA] A public form listing claimable items.
    custom_questions holds the owner-defined question schema (list of dicts).
    """
    __tablename__ = "forms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    custom_questions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    items: Mapped[list["FormItem"]] = relationship(
        back_populates="form", cascade="all, delete-orphan", order_by="FormItem.created_at"
    )


class FormItem(Base):
    """
    [CONFIG DATA for initial_stock] / [TRANSACTIONAL DATA for current_stock]
    price is the minimum order value that unlocks the item, not a unit price.
    version_id is the optimistic locking column, bumped on every stock write.
    """
    __tablename__ = "form_items"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_form_items_current_stock_non_negative"),
        CheckConstraint("initial_stock >= 0", name="ck_form_items_initial_stock_non_negative"),
        CheckConstraint("max_per_response >= 1", name="ck_form_items_max_per_response_positive"),
        CheckConstraint("price >= 0", name="ck_form_items_price_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    form_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("forms.id", ondelete="CASCADE"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    initial_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_per_response: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # optimistic lock
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    form: Mapped[Form] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<FormItem id={self.id} stock={self.current_stock}/{self.initial_stock}>"


class FormResponse(Base):
    """
    [TRANSACTIONAL DATA] One respondent submission.
    order_amount drives eligibility; the other respondent fields are pass-through.
    """
    __tablename__ = "form_responses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    form_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("forms.id", ondelete="CASCADE"), index=True, nullable=False
    )
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_document: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    representative_name: Mapped[str] = mapped_column(String(255), nullable=False)
    representative_email: Mapped[str] = mapped_column(String(255), nullable=False)
    gift_negotiated: Mapped[str] = mapped_column(String(255), nullable=False)
    order_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    answers: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )

    items: Mapped[list["ResponseItem"]] = relationship(back_populates="response")


class ResponseItem(Base):
    """
    [TRANSACTIONAL DATA] One claim line.
    form_item_id is nulled when the owner deletes the item; such lines are
    skipped when stock is restored.
    """
    __tablename__ = "response_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_response_items_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    response_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("form_responses.id", ondelete="CASCADE"), index=True, nullable=False
    )
    form_item_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("form_items.id", ondelete="SET NULL"), index=True, nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    response: Mapped[FormResponse] = relationship(back_populates="items")
    form_item: Mapped[FormItem | None] = relationship()
