"""
SQLAlchemy Database Models
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class QuotationRecord(Base):
    """Quotation table (versioned for optimistic concurrency)"""
    __tablename__ = "quotations"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)  # QUO-YYYYMMDD-NNNN
    version: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)

    # Customer
    user_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    customer_name: Mapped[str] = mapped_column(String(100))
    customer_email: Mapped[str] = mapped_column(String(200))
    customer_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    # Items & money
    items: Mapped[list] = mapped_column(JSON, default=list)
    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    tax_rate: Mapped[float] = mapped_column(Float, default=0.1)
    tax: Mapped[float] = mapped_column(Float, default=0.0)
    discount: Mapped[float] = mapped_column(Float, default=0.0)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prescription_file: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    valid_until: Mapped[datetime] = mapped_column(DateTime, index=True)

    # Staff handling
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejected_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    rejected_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    staff_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    staff_replies: Mapped[list] = mapped_column(JSON, default=list)

    # Customer response
    customer_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    customer_rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    customer_rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Conversion
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    converted_to_order: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    modified_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    events = relationship("QuotationEvent", back_populates="quotation")

    __table_args__ = (
        Index("ix_quotations_status_created", "status", "created_at"),
        Index("ix_quotations_user_created", "user_id", "created_at"),
    )


class QuotationEvent(Base):
    """Immutable transition log"""
    __tablename__ = "quotation_events"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    quotation_id: Mapped[str] = mapped_column(String(20), ForeignKey("quotations.id"), index=True)
    action: Mapped[str] = mapped_column(String(30))
    actor_role: Mapped[str] = mapped_column(String(20))
    actor_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    version: Mapped[int] = mapped_column(Integer)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    quotation = relationship("QuotationRecord", back_populates="events")


class Notification(Base):
    """In-app notification"""
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    target: Mapped[str] = mapped_column(String(20), index=True)  # customer, staff
    recipient: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)
    kind: Mapped[str] = mapped_column(String(50))
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    action_url: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    quotation_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Product(Base):
    """Catalog product"""
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    image: Mapped[str] = mapped_column(String(500), default="")
    price: Mapped[float] = mapped_column(Float)
    inventory: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Order(Base):
    """Order created from a quotation"""
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    order_number: Mapped[str] = mapped_column(String(20), unique=True)
    quotation_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(100))
    customer_email: Mapped[str] = mapped_column(String(200))
    customer_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    items: Mapped[list] = mapped_column(JSON, default=list)
    subtotal: Mapped[float] = mapped_column(Float)
    tax: Mapped[float] = mapped_column(Float)
    shipping: Mapped[float] = mapped_column(Float, default=0.0)
    discount: Mapped[float] = mapped_column(Float, default=0.0)
    total_amount: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(20), default="confirmed")
    payment_method: Mapped[str] = mapped_column(String(20), default="quotation")
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    prescription_file: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    staff_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
