from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderdesk.app.api.deps import get_db

router = APIRouter(prefix="/health")


@router.get("")
def health(db: Session = Depends(get_db)):
    checks = []
    try:
        db.execute(text("SELECT 1"))
        checks.append({"service": "database", "status": "healthy"})
    except SQLAlchemyError as exc:
        checks.append({"service": "database", "status": "unhealthy", "error": str(exc.__cause__ or exc)})

    healthy = all(c["status"] == "healthy" for c in checks)
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        },
    )
