"""Company-scoped repositories.

Every lookup takes an explicit ``company_id``; there is no ambient tenant.
A row belonging to another company is indistinguishable from a missing one.
"""
from __future__ import annotations

from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from spraylog.db import models

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, company_id: UUID, entity_id: UUID) -> ModelT | None:
        stmt = select(self.model).where(
            self.model.id == entity_id,
            self.model.company_id == company_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list(self, company_id: UUID, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = (
            select(self.model)
            .where(self.model.company_id == company_id)
            .order_by(self.model.created_at.desc(), self.model.id)
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())


class CompanyRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, company_id: UUID) -> models.Company | None:
        return self.db.get(models.Company, company_id)


class UserRepository(BaseRepository[models.User]):
    model = models.User


class CustomerRepository(BaseRepository[models.Customer]):
    model = models.Customer


class ChemicalRepository(BaseRepository[models.Chemical]):
    model = models.Chemical

    def get(self, company_id: UUID, entity_id: UUID) -> models.Chemical | None:
        """Company-owned products plus shared reference products."""
        stmt = select(models.Chemical).where(
            models.Chemical.id == entity_id,
            or_(models.Chemical.company_id == company_id, models.Chemical.company_id.is_(None)),
        )
        return self.db.execute(stmt).scalar_one_or_none()


class ApplicationRepository(BaseRepository[models.Application]):
    model = models.Application

    def list(
        self,
        company_id: UUID,
        limit: int = 100,
        offset: int = 0,
        *,
        customer_id: UUID | None = None,
        applicator_id: UUID | None = None,
    ) -> list[models.Application]:
        stmt = select(models.Application).where(models.Application.company_id == company_id)
        if customer_id is not None:
            stmt = stmt.where(models.Application.customer_id == customer_id)
        if applicator_id is not None:
            stmt = stmt.where(models.Application.applicator_id == applicator_id)
        stmt = (
            stmt.order_by(models.Application.application_date.desc(), models.Application.id)
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())


class NotificationLogRepository(BaseRepository[models.NotificationLog]):
    model = models.NotificationLog

    def list(
        self,
        company_id: UUID,
        limit: int = 100,
        offset: int = 0,
        *,
        application_id: UUID | None = None,
        customer_id: UUID | None = None,
        status: str | None = None,
    ) -> list[models.NotificationLog]:
        stmt = select(models.NotificationLog).where(models.NotificationLog.company_id == company_id)
        if application_id is not None:
            stmt = stmt.where(models.NotificationLog.application_id == application_id)
        if customer_id is not None:
            stmt = stmt.where(models.NotificationLog.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(models.NotificationLog.status == status)
        stmt = (
            stmt.order_by(models.NotificationLog.created_at.desc(), models.NotificationLog.id)
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_by_provider_message_id(self, provider_message_id: str) -> models.NotificationLog | None:
        """Webhook lookup; provider callbacks carry no company context."""
        stmt = select(models.NotificationLog).where(
            models.NotificationLog.provider_message_id == provider_message_id
        )
        return self.db.execute(stmt).scalar_one_or_none()
