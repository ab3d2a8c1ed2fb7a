from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlmodel import Session, col, select

from msp.domain.dates import today_utc
from msp.domain.models import (
    Company,
    CreditApplyRequest,
    CreditExpirationUpdateRequest,
    CreditIssueRequest,
    CreditTracking,
    Transaction,
    TransactionType,
    now_utc,
)
from msp.domain.money import format_minor_units
from msp.infra.audit import write_audit_log
from msp.infra.db import get_engine
from msp.infra.events import event_bus
from msp.services.company_service import get_scoped_company
from msp.services.errors import NotFoundError, ValidationError

EXPIRATION_IN_PAST_MESSAGE = "Expiration date cannot be in the past"

logger = logging.getLogger(__name__)


def get_scoped_credit(session: Session, tenant_id: str, credit_id: str) -> CreditTracking:
    credit = session.exec(
        select(CreditTracking).where(CreditTracking.tenant == tenant_id).where(CreditTracking.credit_id == credit_id)
    ).first()
    if credit is None:
        raise NotFoundError("Credit not found")
    return credit


def validate_expiration_date(expiration_date: date | None) -> None:
    # Date-only comparison; today is still valid.
    if expiration_date is not None and expiration_date < today_utc():
        raise ValidationError(EXPIRATION_IN_PAST_MESSAGE)


def record_transaction(
    session: Session,
    company: Company,
    *,
    amount: int,
    transaction_type: TransactionType,
    description: str | None = None,
    related_transaction_id: str | None = None,
    expiration_date: date | None = None,
    status: str = "completed",
) -> Transaction:
    transaction = Transaction(
        tenant=company.tenant,
        company_id=company.company_id,
        amount=amount,
        type=transaction_type,
        status=status,
        description=description,
        related_transaction_id=related_transaction_id,
        expiration_date=expiration_date,
        balance_after=company.credit_balance,
    )
    session.add(transaction)
    return transaction


def expire_credit_entry(session: Session, company: Company, credit: CreditTracking, description: str) -> Transaction:
    """Expire what is left of a credit and take it off the company balance.

    The caller commits. A credit with nothing remaining is still marked expired
    and gets a zero-amount expiration transaction so it is not picked up again.
    """
    amount = credit.remaining_amount
    company.credit_balance -= amount
    company.updated_at = now_utc()
    transaction = record_transaction(
        session,
        company,
        amount=-amount,
        transaction_type=TransactionType.CREDIT_EXPIRATION,
        description=description,
        related_transaction_id=credit.transaction_id,
    )
    credit.remaining_amount = 0
    credit.is_expired = True
    credit.updated_at = now_utc()
    session.add(credit)
    session.add(company)
    logger.info(
        "credit %s expired for company %s, %s removed",
        credit.credit_id,
        company.company_id,
        format_minor_units(amount),
    )
    return transaction


class CreditService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def issue_credit(self, tenant_id: str, payload: CreditIssueRequest, actor_id: str | None = None) -> CreditTracking:
        if payload.amount <= 0:
            raise ValidationError("credit amount must be greater than zero")
        validate_expiration_date(payload.expiration_date)
        with self._session() as session:
            company = get_scoped_company(session, tenant_id, payload.company_id)
            company.credit_balance += payload.amount
            company.updated_at = now_utc()
            transaction = record_transaction(
                session,
                company,
                amount=payload.amount,
                transaction_type=TransactionType.CREDIT_ISSUANCE,
                description=payload.description,
                expiration_date=payload.expiration_date,
            )
            session.flush()
            credit = CreditTracking(
                tenant=tenant_id,
                company_id=company.company_id,
                transaction_id=transaction.transaction_id,
                amount=payload.amount,
                remaining_amount=payload.amount,
                expiration_date=payload.expiration_date,
            )
            session.add(credit)
            session.add(company)
            session.flush()
            write_audit_log(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="credit.issue",
                resource=f"/api/credits/{credit.credit_id}",
                method="POST",
                status_code=201,
                detail={"company_id": company.company_id, "amount": payload.amount},
                session=session,
            )
            session.commit()
            session.refresh(credit)

        event_bus.publish_dict(
            "credit.issued",
            tenant_id,
            {"credit_id": credit.credit_id, "company_id": credit.company_id, "amount": credit.amount},
            actor_id=actor_id,
        )
        return credit

    def apply_credit(self, tenant_id: str, payload: CreditApplyRequest, actor_id: str | None = None) -> dict[str, Any]:
        if payload.amount <= 0:
            raise ValidationError("amount to apply must be greater than zero")
        today = today_utc()
        with self._session() as session:
            company = get_scoped_company(session, tenant_id, payload.company_id)
            statement = (
                select(CreditTracking)
                .where(CreditTracking.tenant == tenant_id)
                .where(CreditTracking.company_id == company.company_id)
                .where(col(CreditTracking.is_expired).is_(False))
                .where(col(CreditTracking.remaining_amount) > 0)
                .where(
                    col(CreditTracking.expiration_date).is_(None) | (col(CreditTracking.expiration_date) >= today)
                )
                # Soonest expiring first, credits without expiration last.
                .order_by(
                    col(CreditTracking.expiration_date).is_(None),
                    col(CreditTracking.expiration_date),
                    col(CreditTracking.created_at),
                )
            )
            credits = list(session.exec(statement).all())
            available = sum(credit.remaining_amount for credit in credits)
            if available < payload.amount:
                raise ValidationError(
                    f"insufficient credit: {format_minor_units(available)} available, "
                    f"{format_minor_units(payload.amount)} requested"
                )

            outstanding = payload.amount
            transactions: list[Transaction] = []
            for credit in credits:
                if outstanding == 0:
                    break
                used = min(outstanding, credit.remaining_amount)
                credit.remaining_amount -= used
                credit.updated_at = now_utc()
                company.credit_balance -= used
                outstanding -= used
                session.add(credit)
                transactions.append(
                    record_transaction(
                        session,
                        company,
                        amount=-used,
                        transaction_type=TransactionType.CREDIT_APPLICATION,
                        description=payload.description,
                        related_transaction_id=credit.transaction_id,
                    )
                )
            company.updated_at = now_utc()
            session.add(company)
            write_audit_log(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="credit.apply",
                resource=f"/api/companies/{company.company_id}/credits",
                method="POST",
                status_code=200,
                detail={"amount": payload.amount, "credits_used": len(transactions)},
                session=session,
            )
            session.commit()
            for transaction in transactions:
                session.refresh(transaction)
            result = {
                "company_id": company.company_id,
                "applied_amount": payload.amount,
                "credit_balance": company.credit_balance,
                "transactions": transactions,
            }

        event_bus.publish_dict(
            "credit.applied",
            tenant_id,
            {"company_id": payload.company_id, "amount": payload.amount},
            actor_id=actor_id,
        )
        return result

    def list_credits(self, tenant_id: str, company_id: str, *, include_expired: bool = False) -> list[CreditTracking]:
        with self._session() as session:
            get_scoped_company(session, tenant_id, company_id)
            statement = (
                select(CreditTracking)
                .where(CreditTracking.tenant == tenant_id)
                .where(CreditTracking.company_id == company_id)
            )
            if not include_expired:
                statement = statement.where(col(CreditTracking.is_expired).is_(False))
            statement = statement.order_by(col(CreditTracking.created_at).desc())
            return list(session.exec(statement).all())

    def get_credit(self, tenant_id: str, credit_id: str) -> CreditTracking:
        with self._session() as session:
            return get_scoped_credit(session, tenant_id, credit_id)

    def list_transactions(
        self,
        tenant_id: str,
        company_id: str,
        *,
        transaction_type: TransactionType | None = None,
    ) -> list[Transaction]:
        with self._session() as session:
            get_scoped_company(session, tenant_id, company_id)
            statement = (
                select(Transaction)
                .where(Transaction.tenant == tenant_id)
                .where(Transaction.company_id == company_id)
            )
            if transaction_type is not None:
                statement = statement.where(Transaction.type == transaction_type)
            statement = statement.order_by(col(Transaction.created_at).desc())
            return list(session.exec(statement).all())

    def update_credit_expiration(
        self,
        tenant_id: str,
        credit_id: str,
        payload: CreditExpirationUpdateRequest,
        actor_id: str | None = None,
    ) -> CreditTracking:
        with self._session() as session:
            credit = get_scoped_credit(session, tenant_id, credit_id)
            if credit.is_expired:
                raise ValidationError("Cannot update expiration date for an expired credit")
            validate_expiration_date(payload.expiration_date)
            previous = credit.expiration_date
            credit.expiration_date = payload.expiration_date
            credit.updated_at = now_utc()
            session.add(credit)
            transaction = session.exec(
                select(Transaction)
                .where(Transaction.tenant == tenant_id)
                .where(Transaction.transaction_id == credit.transaction_id)
            ).first()
            if transaction is not None:
                transaction.expiration_date = payload.expiration_date
                session.add(transaction)
            write_audit_log(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="credit.update_expiration",
                resource=f"/api/credits/{credit_id}",
                method="PATCH",
                status_code=200,
                detail={
                    "old": previous.isoformat() if previous else None,
                    "new": payload.expiration_date.isoformat() if payload.expiration_date else None,
                },
                session=session,
            )
            session.commit()
            session.refresh(credit)
            return credit

    def expire_credit(
        self,
        tenant_id: str,
        credit_id: str,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> CreditTracking:
        with self._session() as session:
            credit = get_scoped_credit(session, tenant_id, credit_id)
            if credit.is_expired:
                raise ValidationError("Credit is already expired")
            if credit.remaining_amount <= 0:
                raise ValidationError("Cannot expire a credit with no remaining amount")
            company = get_scoped_company(session, tenant_id, credit.company_id)
            expired_amount = credit.remaining_amount
            expire_credit_entry(
                session,
                company,
                credit,
                reason or f"Credit manually expired (original transaction: {credit.transaction_id})",
            )
            write_audit_log(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="credit.expire",
                resource=f"/api/credits/{credit_id}",
                method="POST",
                status_code=200,
                detail={"amount": expired_amount},
                session=session,
            )
            session.commit()
            session.refresh(credit)

        event_bus.publish_dict(
            "credit.expired",
            tenant_id,
            {"credit_id": credit_id, "company_id": credit.company_id, "amount": expired_amount},
            actor_id=actor_id,
        )
        return credit
