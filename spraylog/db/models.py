from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
    text as sql_text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spraylog.db.base import Base

APPLICATION_COMPLETED = "completed"
APPLICATION_VOIDED = "voided"

NOTIFICATION_PENDING = "pending"
NOTIFICATION_SENT = "sent"
NOTIFICATION_DELIVERED = "delivered"
NOTIFICATION_FAILED = "failed"

_ACTIVE_NOTIFICATION_CLAUSE = (
    "status IN ('pending', 'sent') OR (status = 'failed' AND next_attempt_at IS NOT NULL)"
)


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    license_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    license_state: Mapped[str | None] = mapped_column(String(8), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    users: Mapped[list[User]] = relationship(back_populates="company")
    customers: Mapped[list[Customer]] = relationship(back_populates="company")


class User(Base):
    """A company member; applicators are users who log applications."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    license_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    license_state: Mapped[str | None] = mapped_column(String(8), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    company: Mapped[Company] = relationship(back_populates="users")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address: Mapped[str] = mapped_column(String(512), nullable=False, default="", server_default=sql_text("''"))
    city: Mapped[str] = mapped_column(String(128), nullable=False, default="", server_default=sql_text("''"))
    state: Mapped[str] = mapped_column(String(8), nullable=False, default="", server_default=sql_text("''"))
    zip_code: Mapped[str] = mapped_column(String(16), nullable=False, default="", server_default=sql_text("''"))
    notify_by_email: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sql_text("true")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    company: Mapped[Company] = relationship(back_populates="customers")

    @property
    def full_address(self) -> str:
        locality = " ".join(part for part in (self.state, self.zip_code) if part)
        parts = [self.address, self.city, locality]
        return ", ".join(part for part in parts if part)


class Chemical(Base):
    """Chemical reference data.  ``company_id`` is null for shared products."""

    __tablename__ = "chemicals"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID | None] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    epa_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    signal_word: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Application(Base):
    """One pesticide application event.

    ``chemical_name``, ``epa_number``, ``customer_name`` and
    ``customer_address`` are snapshots taken when the record is written;
    later edits to the referenced Chemical or Customer never reach them.
    """

    __tablename__ = "applications"
    __table_args__ = (
        Index("ix_applications_company_date", "company_id", "application_date"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    applicator_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    chemical_id: Mapped[UUID] = mapped_column(ForeignKey("chemicals.id", ondelete="RESTRICT"), nullable=False)
    chemical_name: Mapped[str] = mapped_column(String(256), nullable=False)
    epa_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(256), nullable=False)
    customer_address: Mapped[str] = mapped_column(String(1024), nullable=False, default="", server_default=sql_text("''"))
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    application_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    target_pest_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    application_method: Mapped[str | None] = mapped_column(String(64), nullable=True)
    area_treated: Mapped[float | None] = mapped_column(Float, nullable=True)
    area_unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    humidity: Mapped[float | None] = mapped_column(Float, nullable=True)
    wind_speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    wind_direction: Mapped[str | None] = mapped_column(String(8), nullable=True)
    weather_condition: Mapped[str | None] = mapped_column(String(64), nullable=True)
    label_photo_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    before_photo_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    after_photo_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reentry_interval: Mapped[str | None] = mapped_column(String(128), nullable=True)
    customer_consent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sql_text("false")
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=APPLICATION_COMPLETED, server_default=sql_text("'completed'")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    # Optimistic lock: a write based on a stale read fails with StaleDataError.
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    applicator: Mapped[User] = relationship()
    customer: Mapped[Customer] = relationship()
    history: Mapped[list[ApplicationHistory]] = relationship(
        back_populates="application", order_by="ApplicationHistory.sequence"
    )
    notifications: Mapped[list[NotificationLog]] = relationship(back_populates="application")


class ApplicationHistory(Base):
    """Append-only audit entry: one per Application mutation."""

    __tablename__ = "application_history"
    __table_args__ = (
        UniqueConstraint("application_id", "sequence", name="uq_application_history_sequence"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="RESTRICT"), nullable=False
    )
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    changes: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    application: Mapped[Application] = relationship(back_populates="history")


class NotificationLog(Base):
    """One delivery lineage for an Application/Customer pair.

    Resends add attempts to the same row; ``attempt_count`` never resets.
    """

    __tablename__ = "notification_logs"
    __table_args__ = (
        Index("ix_notification_logs_due", "status", "next_attempt_at"),
        Index("ix_notification_logs_application", "application_id"),
        # At most one non-terminal lineage per application.
        Index(
            "uq_notification_logs_active_application",
            "application_id",
            unique=True,
            postgresql_where=sql_text(_ACTIVE_NOTIFICATION_CLAUSE),
            sqlite_where=sql_text(_ACTIVE_NOTIFICATION_CLAUSE),
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    application_id: Mapped[UUID] = mapped_column(
        ForeignKey("applications.id", ondelete="RESTRICT"), nullable=False
    )
    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    subject: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=NOTIFICATION_PENDING, server_default=sql_text("'pending'")
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=sql_text("0"))
    cycle_start_attempt: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=sql_text("0")
    )
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(256), nullable=True, unique=True)
    resend_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=sql_text("0"))
    last_resent_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    application: Mapped[Application] = relationship(back_populates="notifications")

    @property
    def is_terminal(self) -> bool:
        """Delivered, or failed with no retry scheduled."""
        if self.status == NOTIFICATION_DELIVERED:
            return True
        return self.status == NOTIFICATION_FAILED and self.next_attempt_at is None
