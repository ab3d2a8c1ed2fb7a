from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from msp.domain.dates import as_utc, today_utc
from msp.domain.models import (
    CREDIT_SOURCE_TRANSACTION_TYPES,
    CREDIT_TRANSACTION_TYPES,
    Company,
    CreditReconciliationReport,
    CreditTracking,
    ReconciliationIssueType,
    Transaction,
    TransactionType,
    now_utc,
)
from msp.domain.state_machine import (
    UNRESOLVED_RECONCILIATION_STATUSES,
    ReconciliationStatus,
    can_reconciliation_transition,
)
from msp.infra.audit import write_audit_log
from msp.infra.db import get_engine
from msp.infra.events import event_bus
from msp.services.company_service import get_scoped_company
from msp.services.credit_service import expire_credit_entry, record_transaction
from msp.services.errors import ConflictError, ConflictKind, NotFoundError

# Corrections only move the stored balance back onto the ledger, so the
# ledger replay leaves them out.
CORRECTION_TRANSACTION_STATUS = "reconciliation_correction"
DEFAULT_PAGE_SIZE = 20

logger = logging.getLogger(__name__)


def _empty_summary() -> dict[str, int]:
    return {
        "total_companies": 0,
        "balance_valid_count": 0,
        "balance_discrepancy_count": 0,
        "missing_tracking_count": 0,
        "inconsistent_tracking_count": 0,
        "error_count": 0,
    }


class CreditReconciliationService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_report(self, session: Session, tenant_id: str, report_id: str) -> CreditReconciliationReport:
        report = session.exec(
            select(CreditReconciliationReport)
            .where(CreditReconciliationReport.tenant == tenant_id)
            .where(CreditReconciliationReport.report_id == report_id)
        ).first()
        if report is None:
            raise NotFoundError("reconciliation report not found")
        return report

    def _find_unresolved_report(
        self,
        session: Session,
        company: Company,
        issue_type: ReconciliationIssueType,
        *,
        credit_id: str | None = None,
        transaction_id: str | None = None,
    ) -> CreditReconciliationReport | None:
        statement = (
            select(CreditReconciliationReport)
            .where(CreditReconciliationReport.tenant == company.tenant)
            .where(CreditReconciliationReport.company_id == company.company_id)
            .where(CreditReconciliationReport.issue_type == issue_type)
            .where(col(CreditReconciliationReport.status).in_(UNRESOLVED_RECONCILIATION_STATUSES))
        )
        if credit_id is not None:
            statement = statement.where(CreditReconciliationReport.credit_id == credit_id)
        if transaction_id is not None:
            statement = statement.where(CreditReconciliationReport.transaction_id == transaction_id)
        return session.exec(statement).first()

    def _open_or_refresh_report(
        self,
        session: Session,
        company: Company,
        issue_type: ReconciliationIssueType,
        *,
        opened: list[CreditReconciliationReport],
        expected: int,
        actual: int,
        credit_id: str | None = None,
        transaction_id: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> CreditReconciliationReport:
        report = self._find_unresolved_report(
            session, company, issue_type, credit_id=credit_id, transaction_id=transaction_id
        )
        is_new = report is None
        if report is None:
            report = CreditReconciliationReport(
                tenant=company.tenant,
                company_id=company.company_id,
                issue_type=issue_type,
                expected_balance=expected,
                actual_balance=actual,
                difference=expected - actual,
                credit_id=credit_id,
                transaction_id=transaction_id,
            )
        else:
            report.expected_balance = expected
            report.actual_balance = actual
            report.difference = expected - actual
            report.detection_date = now_utc()
            report.updated_at = now_utc()
        report.detail = detail or {}
        session.add(report)
        if is_new:
            opened.append(report)
            logger.info(
                "reconciliation report opened for company %s: %s (expected %s, actual %s)",
                company.company_id,
                issue_type,
                expected,
                actual,
            )
        return report

    def _expire_overdue_credits(self, session: Session, company: Company) -> int:
        overdue = session.exec(
            select(CreditTracking)
            .where(CreditTracking.tenant == company.tenant)
            .where(CreditTracking.company_id == company.company_id)
            .where(col(CreditTracking.is_expired).is_(False))
            .where(col(CreditTracking.expiration_date).is_not(None))
            .where(col(CreditTracking.expiration_date) < today_utc())
        ).all()
        for credit in overdue:
            expire_credit_entry(
                session,
                company,
                credit,
                f"Credit expired (original transaction: {credit.transaction_id})",
            )
        if overdue:
            session.flush()
        return len(overdue)

    def _ledger_balance(self, session: Session, company: Company) -> int:
        total = session.exec(
            select(func.coalesce(func.sum(Transaction.amount), 0))
            .where(Transaction.tenant == company.tenant)
            .where(Transaction.company_id == company.company_id)
            .where(col(Transaction.type).in_(CREDIT_TRANSACTION_TYPES))
            .where(Transaction.status != CORRECTION_TRANSACTION_STATUS)
        ).one()
        return int(total)

    def _check_balance(
        self, session: Session, company: Company, opened: list[CreditReconciliationReport]
    ) -> bool:
        self._expire_overdue_credits(session, company)
        expected = self._ledger_balance(session, company)
        actual = company.credit_balance
        if expected == actual:
            return True
        self._open_or_refresh_report(
            session,
            company,
            ReconciliationIssueType.CREDIT_BALANCE_MISMATCH,
            opened=opened,
            expected=expected,
            actual=actual,
        )
        return False

    def _check_tracking_entries(
        self, session: Session, company: Company, opened: list[CreditReconciliationReport]
    ) -> int:
        tracked = select(CreditTracking.transaction_id).where(CreditTracking.tenant == company.tenant)
        missing = session.exec(
            select(Transaction)
            .where(Transaction.tenant == company.tenant)
            .where(Transaction.company_id == company.company_id)
            .where(col(Transaction.type).in_(CREDIT_SOURCE_TRANSACTION_TYPES))
            .where(col(Transaction.amount) > 0)
            .where(col(Transaction.transaction_id).not_in(tracked))
            .order_by(col(Transaction.created_at))
        ).all()
        for transaction in missing:
            self._open_or_refresh_report(
                session,
                company,
                ReconciliationIssueType.MISSING_CREDIT_TRACKING_ENTRY,
                opened=opened,
                expected=transaction.amount,
                actual=0,
                transaction_id=transaction.transaction_id,
                detail={"transaction_type": transaction.type.value},
            )
        return len(missing)

    def _expected_remaining(self, session: Session, credit: CreditTracking) -> int:
        if credit.is_expired:
            return 0
        applied = session.exec(
            select(func.coalesce(func.sum(Transaction.amount), 0))
            .where(Transaction.tenant == credit.tenant)
            .where(Transaction.related_transaction_id == credit.transaction_id)
            .where(Transaction.type == TransactionType.CREDIT_APPLICATION)
        ).one()
        return credit.amount + int(applied)

    def _check_remaining_amounts(
        self, session: Session, company: Company, opened: list[CreditReconciliationReport]
    ) -> int:
        credits = session.exec(
            select(CreditTracking)
            .where(CreditTracking.tenant == company.tenant)
            .where(CreditTracking.company_id == company.company_id)
        ).all()
        inconsistent = 0
        for credit in credits:
            original = session.exec(
                select(Transaction)
                .where(Transaction.tenant == credit.tenant)
                .where(Transaction.transaction_id == credit.transaction_id)
            ).first()
            if original is None:
                logger.warning("credit %s has no original transaction %s", credit.credit_id, credit.transaction_id)
            expected = self._expected_remaining(session, credit)
            if expected == credit.remaining_amount:
                continue
            inconsistent += 1
            self._open_or_refresh_report(
                session,
                company,
                ReconciliationIssueType.INCONSISTENT_CREDIT_REMAINING_AMOUNT,
                opened=opened,
                expected=expected,
                actual=credit.remaining_amount,
                credit_id=credit.credit_id,
                transaction_id=credit.transaction_id,
            )
        return inconsistent

    def _validate_in_session(
        self, session: Session, company: Company, opened: list[CreditReconciliationReport]
    ) -> dict[str, int]:
        balance_valid = self._check_balance(session, company, opened)
        missing = self._check_tracking_entries(session, company, opened)
        inconsistent = self._check_remaining_amounts(session, company, opened)
        return {
            "total_companies": 1,
            "balance_valid_count": 1 if balance_valid else 0,
            "balance_discrepancy_count": 0 if balance_valid else 1,
            "missing_tracking_count": missing,
            "inconsistent_tracking_count": inconsistent,
            "error_count": 0,
        }

    def validate_company_credit(self, tenant_id: str, company_id: str, actor_id: str | None = None) -> dict[str, int]:
        with self._session() as session:
            company = get_scoped_company(session, tenant_id, company_id)
            opened: list[CreditReconciliationReport] = []
            summary = self._validate_in_session(session, company, opened)
            write_audit_log(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="credit.reconciliation.validate",
                resource=f"/api/companies/{company_id}/credit-validation",
                method="POST",
                status_code=200,
                detail=summary,
                session=session,
            )
            session.commit()

        for report in opened:
            event_bus.publish_dict(
                "reconciliation.report_opened",
                tenant_id,
                {"report_id": report.report_id, "company_id": company_id, "issue_type": report.issue_type.value},
                actor_id=actor_id,
            )
        return summary

    def validate_all_companies(self, tenant_id: str, actor_id: str | None = None) -> dict[str, int]:
        with self._session() as session:
            company_ids = list(
                session.exec(
                    select(Company.company_id)
                    .where(Company.tenant == tenant_id)
                    .order_by(col(Company.company_name))
                ).all()
            )
        totals = _empty_summary()
        for company_id in company_ids:
            try:
                summary = self.validate_company_credit(tenant_id, company_id, actor_id)
            except SQLAlchemyError:
                logger.exception("credit validation failed for company %s", company_id)
                totals["total_companies"] += 1
                totals["error_count"] += 1
                continue
            for key, value in summary.items():
                totals[key] += value
        return totals

    def list_reports(
        self,
        tenant_id: str,
        *,
        company_id: str | None = None,
        status: ReconciliationStatus | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> dict[str, Any]:
        page = max(page, 1)
        page_size = max(page_size, 1)
        with self._session() as session:
            statement = select(CreditReconciliationReport).where(CreditReconciliationReport.tenant == tenant_id)
            if company_id is not None:
                statement = statement.where(CreditReconciliationReport.company_id == company_id)
            if status is not None:
                statement = statement.where(CreditReconciliationReport.status == status)
            if start_date is not None:
                statement = statement.where(col(CreditReconciliationReport.detection_date) >= as_utc(start_date))
            if end_date is not None:
                statement = statement.where(col(CreditReconciliationReport.detection_date) <= as_utc(end_date))
            total = session.exec(select(func.count()).select_from(statement.subquery())).one()
            reports = session.exec(
                statement.order_by(
                    col(CreditReconciliationReport.detection_date).desc(),
                    col(CreditReconciliationReport.report_id),
                )
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
        return {
            "reports": list(reports),
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": math.ceil(total / page_size),
        }

    def get_report(self, tenant_id: str, report_id: str) -> CreditReconciliationReport:
        with self._session() as session:
            return self._get_scoped_report(session, tenant_id, report_id)

    def _transition(self, report: CreditReconciliationReport, target: ReconciliationStatus) -> None:
        if report.status == ReconciliationStatus.RESOLVED:
            raise ConflictError(
                f"Reconciliation report {report.report_id} is already resolved", ConflictKind.INVALID_STATE
            )
        if not can_reconciliation_transition(report.status, target):
            raise ConflictError(
                f"Cannot move reconciliation report from {report.status} to {target}",
                ConflictKind.INVALID_TRANSITION,
            )
        report.status = target
        report.updated_at = now_utc()

    def start_review(
        self, tenant_id: str, report_id: str, actor_id: str | None = None
    ) -> CreditReconciliationReport:
        with self._session() as session:
            report = self._get_scoped_report(session, tenant_id, report_id)
            self._transition(report, ReconciliationStatus.IN_REVIEW)
            session.add(report)
            session.commit()
            session.refresh(report)
        logger.info("reconciliation report %s moved to review by %s", report_id, actor_id)
        return report

    def _repair_tracking(self, session: Session, report: CreditReconciliationReport) -> None:
        if report.issue_type == ReconciliationIssueType.MISSING_CREDIT_TRACKING_ENTRY and report.transaction_id:
            transaction = session.exec(
                select(Transaction)
                .where(Transaction.tenant == report.tenant)
                .where(Transaction.transaction_id == report.transaction_id)
            ).first()
            if transaction is None:
                logger.warning("report %s points at missing transaction %s", report.report_id, report.transaction_id)
                return
            session.add(
                CreditTracking(
                    tenant=report.tenant,
                    company_id=report.company_id,
                    transaction_id=transaction.transaction_id,
                    amount=transaction.amount,
                    remaining_amount=transaction.amount,
                    expiration_date=transaction.expiration_date,
                )
            )
        elif report.issue_type == ReconciliationIssueType.INCONSISTENT_CREDIT_REMAINING_AMOUNT and report.credit_id:
            credit = session.exec(
                select(CreditTracking)
                .where(CreditTracking.tenant == report.tenant)
                .where(CreditTracking.credit_id == report.credit_id)
            ).first()
            if credit is not None:
                credit.remaining_amount = report.expected_balance
                credit.updated_at = now_utc()
                session.add(credit)

    def resolve(
        self,
        tenant_id: str,
        report_id: str,
        actor_id: str | None = None,
        notes: str | None = None,
    ) -> CreditReconciliationReport:
        with self._session() as session:
            report = self._get_scoped_report(session, tenant_id, report_id)
            self._transition(report, ReconciliationStatus.RESOLVED)
            company = get_scoped_company(session, tenant_id, report.company_id)
            if report.issue_type == ReconciliationIssueType.CREDIT_BALANCE_MISMATCH:
                company.credit_balance = report.expected_balance
                company.updated_at = now_utc()
                session.add(company)
            else:
                self._repair_tracking(session, report)
            correction = record_transaction(
                session,
                company,
                amount=report.difference,
                transaction_type=TransactionType.CREDIT_ADJUSTMENT,
                description=f"Credit correction from reconciliation report {report_id}",
                related_transaction_id=report.transaction_id,
                status=CORRECTION_TRANSACTION_STATUS,
            )
            report.resolution_date = now_utc()
            report.resolution_user = actor_id
            report.resolution_notes = notes
            report.resolution_transaction_id = correction.transaction_id
            session.add(report)
            write_audit_log(
                tenant_id=tenant_id,
                actor_id=actor_id,
                action="credit.reconciliation.resolve",
                resource=f"/api/reconciliation/reports/{report_id}",
                method="POST",
                status_code=200,
                detail={
                    "company_id": company.company_id,
                    "issue_type": report.issue_type.value,
                    "difference": report.difference,
                },
                session=session,
            )
            session.commit()
            session.refresh(report)

        logger.info("reconciliation report %s resolved by %s", report_id, actor_id)
        event_bus.publish_dict(
            "reconciliation.report_resolved",
            tenant_id,
            {"report_id": report_id, "company_id": report.company_id, "difference": report.difference},
            actor_id=actor_id,
        )
        return report
