"""In-memory credential storage for the virtual authenticator."""

from __future__ import annotations

import copy
import threading
from typing import Dict, Iterable, List, Optional

from .models import CredentialRecord


class CredentialStoreError(RuntimeError):
    pass


class CredentialStore:
    def __init__(self) -> None:
        self._records: Dict[str, CredentialRecord] = {}
        self._lock = threading.Lock()

    def save(self, record: CredentialRecord) -> CredentialRecord:
        with self._lock:
            self._records[record.credential_id] = copy.copy(record)
        return record

    def load(self, credential_id: str) -> CredentialRecord:
        with self._lock:
            record = self._records.get(credential_id)
        if record is None:
            raise CredentialStoreError(f"Credential {credential_id} not found")
        return copy.copy(record)

    def list_all(self) -> List[CredentialRecord]:
        with self._lock:
            return [copy.copy(record) for record in self._records.values()]

    def find_by_rp(self, rp_id: str) -> List[CredentialRecord]:
        return [record for record in self.list_all() if record.rp_id == rp_id]

    def find_first(self, allow_credentials: Iterable[str]) -> Optional[CredentialRecord]:
        for cred_id in allow_credentials:
            try:
                return self.load(cred_id)
            except CredentialStoreError:
                continue
        return None
