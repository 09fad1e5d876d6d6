"""
Liveness and readiness probes.
/ready checks PostgreSQL and Redis (circuit breaker storage) separately.
"""
import redis
from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.orm import Session

from comicpay.core.config import settings
from comicpay.db.session import get_db
from comicpay.services.purchases.config import get_payment_networks

router = APIRouter()


def _check_redis() -> None:
    client = redis.Redis.from_url(settings.redis_url, socket_connect_timeout=2)
    try:
        client.ping()
    finally:
        client.close()


@router.get("/health")
def health() -> dict:
    """Liveness probe: 200 while the process serves requests."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    checks: dict[str, str] = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"
    try:
        _check_redis()
        checks["redis"] = "ok"
    except redis.RedisError as e:
        checks["redis"] = f"error: {e}"

    ready = all(v == "ok" for v in checks.values())
    if not ready:
        response.status_code = 503
    return {
        "status": "ready" if ready else "not_ready",
        "checks": checks,
        "paymentNetworks": sorted(get_payment_networks()),
    }
