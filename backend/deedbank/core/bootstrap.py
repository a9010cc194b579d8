import logging
import os
from threading import Lock

from fastapi import Depends, HTTPException, status
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from deedbank.core.migrations import RunMigrations
from deedbank.db import GetDb
from deedbank.modules.family.models import Child, DeedType, Parent
from deedbank.modules.ledger.models import Deed, Redemption

logger = logging.getLogger("app.bootstrap")

_storage_lock = Lock()
_storage_ready = False

STORAGE_TABLES = [Parent, Child, DeedType, Deed, Redemption]


def _env_truthy(name: str) -> bool:
    value = os.getenv(name, "").strip().lower()
    return value in {"1", "true", "yes", "on"}


def _MissingTables(db: Session) -> list[str]:
    inspector = inspect(db.get_bind())
    return [
        table.__tablename__
        for table in STORAGE_TABLES
        if not inspector.has_table(table.__tablename__)
    ]


def CreateMissingTables(bind) -> None:
    with bind.begin() as connection:
        for table in STORAGE_TABLES:
            table.__table__.create(bind=connection, checkfirst=True)


def EnsureStorageReady(db: Session = Depends(GetDb)) -> None:
    global _storage_ready
    if _storage_ready:
        return

    with _storage_lock:
        if _storage_ready:
            return
        missing = _MissingTables(db)
        if not missing:
            _storage_ready = True
            return

        if _env_truthy("DEEDBANK_SKIP_BOOTSTRAP"):
            logger.error("storage missing tables=%s and bootstrap disabled", ",".join(missing))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Storage not initialized. Run alembic upgrade head.",
            )

        logger.info("storage missing tables=%s", ",".join(missing))
        try:
            RunMigrations()
        except Exception:
            logger.exception("storage migration failed")

        missing = _MissingTables(db)
        if not missing:
            _storage_ready = True
            return

        logger.warning("storage still missing tables=%s, attempting repair", ",".join(missing))
        try:
            CreateMissingTables(db.get_bind())
        except Exception as exc:
            logger.exception("storage repair failed")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Storage migration failed. Check server logs.",
            ) from exc

        missing = _MissingTables(db)
        if missing:
            logger.error("storage still missing tables=%s", ",".join(missing))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Storage migration failed. Check server logs.",
            )
        _storage_ready = True
        logger.info("bootstrap complete")
