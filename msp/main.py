from __future__ import annotations

from fastapi import FastAPI, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from msp.api.errors import database_error_handler
from msp.api.routers import (
    asset,
    asset_type,
    billing,
    company,
    credit,
    identity,
    reconciliation,
    usage,
)
from msp.infra.audit import AuditMiddleware
from msp.infra.db import check_db_ready
from msp.infra.logging_config import configure_logging

configure_logging()

app = FastAPI(
    title="msp-asset-billing",
    description="Multi-tenant asset registry and billing core for managed service providers.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)
app.add_exception_handler(SQLAlchemyError, database_error_handler)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(company.router, prefix="/api/companies", tags=["companies"])
app.include_router(asset_type.router, prefix="/api/asset-types", tags=["asset-types"])
app.include_router(asset.router, prefix="/api/assets", tags=["assets"])
app.include_router(billing.router, prefix="/api/billing", tags=["billing"])
app.include_router(usage.router, prefix="/api/usage", tags=["usage"])
app.include_router(credit.router, prefix="/api/credits", tags=["credits"])
app.include_router(reconciliation.router, prefix="/api/reconciliation", tags=["reconciliation"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
