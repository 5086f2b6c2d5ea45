"""
Server-side subscription record store.

The API server keeps its own records, independent of any client's local
store. The repository is constructed once per process by the application
and passed to whoever needs it; nothing here lives at module scope.

Concurrent updates to the same record are not serialized: last write wins.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List, Optional

from subscription.models import ServerSubscriptionRecord


class SubscriptionRepository(ABC):
    """Capability set the verification adapter relies on"""

    @abstractmethod
    async def find_by_token(self, token: str) -> Optional[ServerSubscriptionRecord]:
        pass

    @abstractmethod
    async def find_by_mobile_code(self, code: str) -> Optional[ServerSubscriptionRecord]:
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> List[ServerSubscriptionRecord]:
        pass

    @abstractmethod
    async def create(self, record: ServerSubscriptionRecord) -> ServerSubscriptionRecord:
        pass

    @abstractmethod
    async def update(self, record: ServerSubscriptionRecord) -> Optional[ServerSubscriptionRecord]:
        """Replace the stored record with the same id; None if unknown"""
        pass

    @abstractmethod
    async def cancel(self, token: str) -> Optional[ServerSubscriptionRecord]:
        """Soft-cancel (active=False); None if no record has this token"""
        pass

    @abstractmethod
    async def all(self) -> List[ServerSubscriptionRecord]:
        pass


class InMemorySubscriptionRepository(SubscriptionRepository):
    """Process-local list of records; nothing is ever hard-deleted"""

    def __init__(self):
        self._records: List[ServerSubscriptionRecord] = []

    def _index_of(self, predicate) -> int:
        for i, record in enumerate(self._records):
            if predicate(record):
                return i
        return -1

    async def find_by_token(self, token: str) -> Optional[ServerSubscriptionRecord]:
        i = self._index_of(lambda r: r.access_token == token)
        return self._records[i] if i >= 0 else None

    async def find_by_mobile_code(self, code: str) -> Optional[ServerSubscriptionRecord]:
        i = self._index_of(lambda r: r.mobile_access_code == code)
        return self._records[i] if i >= 0 else None

    async def find_by_email(self, email: str) -> List[ServerSubscriptionRecord]:
        wanted = email.strip().lower()
        return [r for r in self._records if r.email.lower() == wanted]

    async def create(self, record: ServerSubscriptionRecord) -> ServerSubscriptionRecord:
        self._records.append(record)
        return record

    async def update(self, record: ServerSubscriptionRecord) -> Optional[ServerSubscriptionRecord]:
        i = self._index_of(lambda r: r.id == record.id)
        if i < 0:
            return None
        self._records[i] = record
        return record

    async def cancel(self, token: str) -> Optional[ServerSubscriptionRecord]:
        i = self._index_of(lambda r: r.access_token == token)
        if i < 0:
            return None
        self._records[i] = replace(self._records[i], active=False)
        return self._records[i]

    async def all(self) -> List[ServerSubscriptionRecord]:
        return list(self._records)
