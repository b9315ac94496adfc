"""Service wiring and FastAPI dependencies.

Services are built once in the application lifespan and kept on
``app.state.services``; routes reach them through the dependencies below so
tests can swap in their own instances.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codedrop.config import settings
from codedrop.services.accounts import AccountService, InMemoryAccountStore, SqlAccountStore
from codedrop.services.blob_storage import BlobStorage, build_blob_storage
from codedrop.services.file_service import FileService, utcnow
from codedrop.services.record_store import FileRecordStore, InMemoryFileRecordStore
from codedrop.services.sql_record_store import SqlFileRecordStore
from codedrop.services.sweeper import RetentionSweeper

SESSION_USER_KEY = "user_id"


@dataclass
class Services:
    store: FileRecordStore
    files: FileService
    accounts: AccountService
    sweeper: RetentionSweeper


def build_services(
    record_store_type: str = settings.RECORD_STORE_TYPE,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    blob_storage: Optional[BlobStorage] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    """Assemble the core for the configured backend ("database" or "memory")."""
    blob_storage = blob_storage or build_blob_storage()
    code_attempts = settings.CODE_GENERATION_ATTEMPTS

    if record_store_type == "database":
        if session_factory is None:
            from codedrop.database import async_session
            session_factory = async_session
        store = SqlFileRecordStore(session_factory, blob_storage, code_attempts=code_attempts)
        account_store = SqlAccountStore(session_factory)
    elif record_store_type == "memory":
        store = InMemoryFileRecordStore(blob_storage, code_attempts=code_attempts)
        account_store = InMemoryAccountStore()
    else:
        raise ValueError(f"Unknown record store type: {record_store_type}")

    return Services(
        store=store,
        files=FileService(store, clock=clock),
        accounts=AccountService(account_store, clock=clock),
        sweeper=RetentionSweeper(store, clock=clock, interval_seconds=settings.SWEEP_INTERVAL_SECONDS),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_file_service(services: Services = Depends(get_services)) -> FileService:
    return services.files


def get_account_service(services: Services = Depends(get_services)) -> AccountService:
    return services.accounts


def get_current_user_id(request: Request) -> Optional[str]:
    """Logged-in account id from the session cookie, or None for anonymous requests."""
    return request.session.get(SESSION_USER_KEY)


def require_user_id(user_id: Optional[str] = Depends(get_current_user_id)) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id
