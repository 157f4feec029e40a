"""Credential registry backed by the SQLAlchemy models."""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from .database import Database
from .errors import ErrorKind, VerificationError
from .models import Credential, User, utcnow
from .records import CredentialRecord, UserRecord

LOGGER = logging.getLogger(__name__)

# Concurrent writers can only move the counter forward, so a handful of
# re-reads is enough to settle a compare-and-set race.
MAX_COUNTER_ATTEMPTS = 5


def _to_record(credential: Credential) -> CredentialRecord:
    return CredentialRecord(
        credential_id=credential.id,
        user_handle=credential.user_handle,
        algorithm=credential.algorithm,
        public_key=credential.public_key,
        sign_count=credential.sign_count,
        created_at=credential.created_at,
        label=credential.label,
        aaguid=credential.aaguid,
        transports=list(credential.transports or []),
        backup_eligible=credential.backup_eligible,
        backed_up=credential.backed_up,
        last_used_at=credential.last_used_at,
    )


def _to_user(user: User) -> UserRecord:
    return UserRecord(
        user_handle=user.user_handle,
        username=user.username,
        display_name=user.display_name,
        credential_ids=[credential.id for credential in user.credentials],
    )


class CredentialRegistry:
    def __init__(self, db: Database):
        self.db = db

    # Users -------------------------------------------------------------
    def ensure_user(self, user_handle: str, username: str, display_name: str) -> UserRecord:
        """Return the user for ``user_handle``, creating it on first use.

        A username already held by another handle is refused with
        ``UserMismatch``; this also covers a concurrent insert that wins the
        race for either the handle or the username.
        """
        try:
            with self.db.session() as session:
                user = session.get(User, user_handle)
                if user:
                    if user.display_name != display_name:
                        user.display_name = display_name
                    return _to_user(user)
                holder = session.scalar(select(User.user_handle).where(User.username == username))
                if holder is not None:
                    raise VerificationError(
                        ErrorKind.USER_MISMATCH, f"username {username!r} belongs to another user"
                    )
                user = User(user_handle=user_handle, username=username, display_name=display_name)
                session.add(user)
                session.flush()
                LOGGER.debug("Created user %s", user_handle)
                return _to_user(user)
        except IntegrityError as exc:
            existing = self.get_user(user_handle)
            if existing is not None and existing.username == username:
                return existing
            raise VerificationError(
                ErrorKind.USER_MISMATCH, f"username {username!r} belongs to another user"
            ) from exc

    def get_user(self, user_handle: str) -> Optional[UserRecord]:
        with self.db.session() as session:
            user = session.get(User, user_handle)
            return _to_user(user) if user else None

    def find_user_by_name(self, username: str) -> Optional[UserRecord]:
        with self.db.session() as session:
            user = session.scalar(select(User).where(User.username == username))
            return _to_user(user) if user else None

    # Credentials -------------------------------------------------------
    def add(self, user_handle: str, record: CredentialRecord) -> None:
        try:
            with self.db.session() as session:
                if session.get(Credential, record.credential_id) is not None:
                    raise VerificationError(ErrorKind.DUPLICATE_CREDENTIAL)
                session.add(
                    Credential(
                        id=record.credential_id,
                        user_handle=user_handle,
                        public_key=record.public_key,
                        algorithm=record.algorithm,
                        sign_count=record.sign_count,
                        label=record.label,
                        aaguid=record.aaguid,
                        transports=list(record.transports),
                        backup_eligible=record.backup_eligible,
                        backed_up=record.backed_up,
                        created_at=record.created_at or utcnow(),
                    )
                )
                session.flush()
        except IntegrityError as exc:
            # Lost a race against another insert of the same id.
            raise VerificationError(ErrorKind.DUPLICATE_CREDENTIAL) from exc

    def find(self, credential_id: str) -> Optional[CredentialRecord]:
        with self.db.session() as session:
            credential = session.get(Credential, credential_id)
            return _to_record(credential) if credential else None

    def list_for(self, user_handle: str) -> List[CredentialRecord]:
        with self.db.session() as session:
            credentials = session.scalars(
                select(Credential)
                .where(Credential.user_handle == user_handle)
                .order_by(Credential.created_at)
            )
            return [_to_record(credential) for credential in credentials]

    def update_counter(self, credential_id: str, new_counter: int) -> None:
        if new_counter < 0:
            raise ValueError("signature counter cannot be negative")
        with self.db.session() as session:
            for _ in range(MAX_COUNTER_ATTEMPTS):
                stored = session.scalar(
                    select(Credential.sign_count).where(Credential.id == credential_id)
                )
                if stored is None:
                    raise VerificationError(ErrorKind.UNKNOWN_CREDENTIAL)
                if stored != 0 and new_counter <= stored:
                    raise VerificationError(
                        ErrorKind.COUNTER_ROLLBACK, f"stored={stored} received={new_counter}"
                    )
                result = session.execute(
                    update(Credential)
                    .where(Credential.id == credential_id, Credential.sign_count == stored)
                    .values(sign_count=new_counter, last_used_at=utcnow())
                )
                if result.rowcount == 1:
                    return
            raise VerificationError(ErrorKind.COUNTER_ROLLBACK, "counter kept changing")

    def rename(self, credential_id: str, label: Optional[str]) -> CredentialRecord:
        with self.db.session() as session:
            credential = session.get(Credential, credential_id)
            if credential is None:
                raise VerificationError(ErrorKind.UNKNOWN_CREDENTIAL)
            credential.label = label
            return _to_record(credential)

    def remove(self, credential_id: str) -> bool:
        with self.db.session() as session:
            result = session.execute(delete(Credential).where(Credential.id == credential_id))
            return result.rowcount > 0
