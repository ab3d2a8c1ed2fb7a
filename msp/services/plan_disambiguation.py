"""Which company billing plan should bill a usage record.

The selection policy is pure and has three ordered branches:

1. exactly one eligible plan is selected automatically;
2. otherwise exactly one eligible ``bucket`` plan is selected, so pooled
   hours are consumed before overage plans;
3. otherwise nothing is selected and the caller must choose explicitly.

A service that sits in several plans for the same company is a billing risk,
so ambiguity is surfaced to the caller instead of being guessed away.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlmodel import Session, col, or_, select

from msp.domain.models import BillingPlan, BillingPlanType, CompanyBillingPlan, PlanService, Service

AMBIGUOUS_PLAN_WARNING = (
    "This service is included in multiple billing plans for this company. "
    "Select the plan that should bill this usage to avoid misbilling."
)


@dataclass(frozen=True)
class EligiblePlan:
    company_billing_plan_id: str
    plan_id: str
    plan_name: str
    plan_type: BillingPlanType


@dataclass(frozen=True)
class PlanSelection:
    eligible_plans: list[EligiblePlan]
    default_billing_plan_id: str | None

    @property
    def requires_explicit_selection(self) -> bool:
        return len(self.eligible_plans) > 1 and self.default_billing_plan_id is None

    @property
    def warning(self) -> str | None:
        return AMBIGUOUS_PLAN_WARNING if len(self.eligible_plans) > 1 else None


def determine_default_billing_plan(eligible: Sequence[EligiblePlan]) -> str | None:
    if len(eligible) == 1:
        return eligible[0].company_billing_plan_id
    if not eligible:
        return None
    bucket_plans = [plan for plan in eligible if plan.plan_type == BillingPlanType.BUCKET]
    if len(bucket_plans) == 1:
        return bucket_plans[0].company_billing_plan_id
    return None


def resolve_billing_plan(eligible: Sequence[EligiblePlan], current: str | None) -> str | None:
    """Keep a still-eligible selection, clear a stale one, else apply the default."""
    if not eligible:
        return None
    if current is not None and any(plan.company_billing_plan_id == current for plan in eligible):
        return current
    return determine_default_billing_plan(eligible)


def select_billing_plan(eligible: Sequence[EligiblePlan]) -> PlanSelection:
    return PlanSelection(
        eligible_plans=list(eligible),
        default_billing_plan_id=determine_default_billing_plan(eligible),
    )


def get_eligible_billing_plans(
    session: Session,
    tenant_id: str,
    company_id: str,
    service_id: str,
    *,
    as_of: datetime,
) -> list[EligiblePlan]:
    service = session.exec(
        select(Service).where(Service.tenant == tenant_id).where(Service.service_id == service_id)
    ).first()
    if service is None:
        return []

    statement = (
        select(CompanyBillingPlan, BillingPlan)
        .join(
            BillingPlan,
            (col(BillingPlan.tenant) == col(CompanyBillingPlan.tenant))
            & (col(BillingPlan.plan_id) == col(CompanyBillingPlan.plan_id)),
        )
        .join(
            PlanService,
            (col(PlanService.tenant) == col(CompanyBillingPlan.tenant))
            & (col(PlanService.plan_id) == col(CompanyBillingPlan.plan_id)),
        )
        .where(CompanyBillingPlan.tenant == tenant_id)
        .where(CompanyBillingPlan.company_id == company_id)
        .where(CompanyBillingPlan.is_active == True)  # noqa: E712
        .where(PlanService.service_id == service_id)
        .where(or_(col(CompanyBillingPlan.end_date).is_(None), col(CompanyBillingPlan.end_date) > as_of))
    )
    if service.category_id is not None:
        statement = statement.where(
            or_(
                col(CompanyBillingPlan.service_category) == service.category_id,
                col(CompanyBillingPlan.service_category).is_(None),
            )
        )
    statement = statement.order_by(col(BillingPlan.plan_name), col(CompanyBillingPlan.company_billing_plan_id))

    return [
        EligiblePlan(
            company_billing_plan_id=company_plan.company_billing_plan_id,
            plan_id=plan.plan_id,
            plan_name=plan.plan_name or "Unnamed Plan",
            plan_type=plan.plan_type,
        )
        for company_plan, plan in session.exec(statement).all()
    ]
