"""
Call-log and lead repository interface, plus the in-memory implementation
used when no database is configured.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import structlog

from callrelay.storage.models import (
    CallLog,
    CallLogCreate,
    CallLogUpdate,
    CallStats,
    Lead,
    LeadCreate,
)

logger = structlog.get_logger("storage")


class StorageError(Exception):
    """Raised when the repository cannot complete an operation."""
    pass


class CallStorage(ABC):
    """Narrow CRUD interface consumed by the REST layer."""

    @abstractmethod
    async def create_call_log(self, data: CallLogCreate) -> CallLog: ...

    @abstractmethod
    async def get_call_logs(self) -> List[CallLog]:
        """All call logs, newest ``started_at`` first."""

    @abstractmethod
    async def get_call_log(self, call_id: str) -> Optional[CallLog]: ...

    @abstractmethod
    async def get_call_log_by_engine_id(self, engine_call_id: str) -> Optional[CallLog]: ...

    @abstractmethod
    async def update_call_log(self, call_id: str, updates: CallLogUpdate) -> Optional[CallLog]:
        """Apply the fields explicitly set in ``updates``; None if the log is missing."""

    @abstractmethod
    async def get_call_stats(self) -> CallStats: ...

    @abstractmethod
    async def create_lead(self, data: LeadCreate) -> Lead: ...

    @abstractmethod
    async def get_leads(self) -> List[Lead]:
        """All leads, newest ``created_at`` first."""

    @abstractmethod
    async def get_lead(self, lead_id: str) -> Optional[Lead]: ...

    @abstractmethod
    async def get_lead_by_call_id(self, call_log_id: str) -> Optional[Lead]: ...

    def close(self) -> None:
        pass


def compute_stats(logs: List[CallLog]) -> CallStats:
    total_calls = len(logs)
    total_duration = sum(log.duration or 0 for log in logs)
    return CallStats(
        total_calls=total_calls,
        total_duration=total_duration,
        avg_duration=round(total_duration / total_calls) if total_calls else 0,
        completed_calls=sum(1 for log in logs if log.status == "completed"),
    )


class InMemoryStorage(CallStorage):
    """Process-local storage; contents are lost on restart."""

    def __init__(self) -> None:
        self._call_logs: Dict[str, CallLog] = {}
        self._leads: Dict[str, Lead] = {}
        logger.info("memory_storage_initialized")

    async def create_call_log(self, data: CallLogCreate) -> CallLog:
        call_log = CallLog(**data.model_dump())
        self._call_logs[call_log.id] = call_log
        logger.info(
            "call_log_created",
            call_id=call_log.id,
            duration=call_log.duration,
            status=call_log.status,
        )
        return call_log

    async def get_call_logs(self) -> List[CallLog]:
        return sorted(self._call_logs.values(), key=lambda c: c.started_at, reverse=True)

    async def get_call_log(self, call_id: str) -> Optional[CallLog]:
        return self._call_logs.get(call_id)

    async def get_call_log_by_engine_id(self, engine_call_id: str) -> Optional[CallLog]:
        for call_log in self._call_logs.values():
            if call_log.engine_call_id == engine_call_id:
                return call_log
        return None

    async def update_call_log(self, call_id: str, updates: CallLogUpdate) -> Optional[CallLog]:
        call_log = self._call_logs.get(call_id)
        if call_log is None:
            logger.warning("call_log_not_found", call_id=call_id)
            return None
        changes = updates.changes()
        updated = call_log.model_copy(update=changes)
        self._call_logs[call_id] = updated
        logger.info("call_log_updated", call_id=call_id, fields=sorted(changes))
        return updated

    async def get_call_stats(self) -> CallStats:
        return compute_stats(list(self._call_logs.values()))

    async def create_lead(self, data: LeadCreate) -> Lead:
        lead = Lead(**data.model_dump())
        self._leads[lead.id] = lead
        logger.info("lead_created", lead_id=lead.id, call_log_id=lead.call_log_id)
        return lead

    async def get_leads(self) -> List[Lead]:
        return sorted(self._leads.values(), key=lambda l: l.created_at, reverse=True)

    async def get_lead(self, lead_id: str) -> Optional[Lead]:
        return self._leads.get(lead_id)

    async def get_lead_by_call_id(self, call_log_id: str) -> Optional[Lead]:
        for lead in self._leads.values():
            if lead.call_log_id == call_log_id:
                return lead
        return None
