"""Accounts: username/password registration and login.

Accounts only exist to attach an owner to uploads; sessions are handled by
the API layer.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codedrop.models.account import Account
from codedrop.services.errors import (
    InvalidAccountInput,
    InvalidCredentials,
    StorageUnavailable,
    UsernameTaken,
)
from codedrop.services.passwords import hash_password_async, verify_password_async

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 50
MIN_PASSWORD_LENGTH = 4

# Verified against when the username is unknown so both failures cost the same
_DUMMY_HASH = "00" * 16 + ":" + "00" * 32


@dataclass(frozen=True)
class UserAccount:
    id: str
    username: str
    password_hash: str
    created_at: datetime


class AccountStore(ABC):
    @abstractmethod
    async def add(self, account: UserAccount) -> None:
        """Persist a new account. Raises UsernameTaken on a duplicate username."""

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[UserAccount]:
        pass

    @abstractmethod
    async def get_by_id(self, account_id: str) -> Optional[UserAccount]:
        pass


class InMemoryAccountStore(AccountStore):
    """Process-local account store; see InMemoryFileRecordStore for the caveats."""

    def __init__(self):
        self._accounts: dict[str, UserAccount] = {}
        self._lock = asyncio.Lock()

    async def add(self, account: UserAccount) -> None:
        async with self._lock:
            if any(a.username == account.username for a in self._accounts.values()):
                raise UsernameTaken("Username already exists")
            self._accounts[account.id] = account

    async def get_by_username(self, username: str) -> Optional[UserAccount]:
        return next((a for a in self._accounts.values() if a.username == username), None)

    async def get_by_id(self, account_id: str) -> Optional[UserAccount]:
        return self._accounts.get(account_id)


def _to_account(row: Account) -> UserAccount:
    created_at = row.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return UserAccount(
        id=str(row.id),
        username=row.username,
        password_hash=row.password_hash,
        created_at=created_at,
    )


class SqlAccountStore(AccountStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, account: UserAccount) -> None:
        try:
            async with self.session_factory() as db:
                db.add(Account(
                    id=uuid.UUID(account.id),
                    username=account.username,
                    password_hash=account.password_hash,
                    created_at=account.created_at,
                ))
                await db.commit()
        except IntegrityError as e:
            raise UsernameTaken("Username already exists") from e
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(f"Account store unavailable: {e}") from e

    async def _fetch_one(self, query) -> Optional[UserAccount]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                row = result.scalar_one_or_none()
                return _to_account(row) if row else None
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(f"Account store unavailable: {e}") from e

    async def get_by_username(self, username: str) -> Optional[UserAccount]:
        return await self._fetch_one(select(Account).where(Account.username == username))

    async def get_by_id(self, account_id: str) -> Optional[UserAccount]:
        try:
            uid = uuid.UUID(str(account_id))
        except ValueError:
            return None
        return await self._fetch_one(select(Account).where(Account.id == uid))


class AccountService:
    def __init__(self, store: AccountStore, clock: Callable[[], datetime]):
        self.store = store
        self.clock = clock

    async def register(self, username: str, password: str) -> UserAccount:
        username = (username or "").strip()
        if not MIN_USERNAME_LENGTH <= len(username) <= MAX_USERNAME_LENGTH:
            raise InvalidAccountInput(
                f"Username must be between {MIN_USERNAME_LENGTH} and {MAX_USERNAME_LENGTH} characters"
            )
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidAccountInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        account = UserAccount(
            id=str(uuid.uuid4()),
            username=username,
            password_hash=await hash_password_async(password),
            created_at=self.clock(),
        )
        await self.store.add(account)
        logger.info(f"Registered account {account.id} ({username})")
        return account

    async def authenticate(self, username: str, password: str) -> UserAccount:
        if not username or not password:
            raise InvalidCredentials("Username and password are required")
        account = await self.store.get_by_username(username.strip())
        stored_hash = account.password_hash if account else _DUMMY_HASH
        valid = await verify_password_async(password, stored_hash)
        if account is None or not valid:
            raise InvalidCredentials("Invalid username or password")
        return account

    async def get(self, account_id: str) -> Optional[UserAccount]:
        return await self.store.get_by_id(account_id)
