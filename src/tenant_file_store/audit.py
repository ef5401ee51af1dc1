"""
Fire-and-forget аудит.

Каждая запись уходит в отдельную asyncio-задачу; любые ошибки записи ловятся
на границе задачи и только логируются - основной сценарий (загрузка,
удаление) никогда не падает из-за аудита.
"""
import asyncio
import logging
from typing import Optional, Protocol
from uuid import UUID

from tenant_file_store.models.audit import AuditEntry

logger = logging.getLogger(__name__)

EMPTY_ENTITY_ID = str(UUID(int=0))


class AuditAuthority(Protocol):
    async def record(self, entry: AuditEntry) -> None: ...


class AuditSink:
    def __init__(self, authority: AuditAuthority):
        self._authority = authority
        self._pending: set[asyncio.Task] = set()

    @property
    def authority(self) -> AuditAuthority:
        return self._authority

    @property
    def pending(self) -> int:
        return len(self._pending)

    def record(
        self,
        user_id: UUID,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        is_success: bool = True,
        details: Optional[str] = None,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Ставит запись в очередь и сразу возвращает управление."""
        try:
            entry = AuditEntry(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id or EMPTY_ENTITY_ID,
                is_success=is_success,
                details=details,
                error_message=error_message,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            task = asyncio.get_running_loop().create_task(self._write(entry))
        except Exception as e:
            logger.warning(f"Audit entry '{action}' dropped: {e}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, entry: AuditEntry) -> None:
        try:
            await self._authority.record(entry)
        except asyncio.CancelledError:
            logger.warning(f"Audit entry '{entry.action}' for {entry.entity_id} cancelled")
        except Exception as e:
            logger.error(f"Audit entry '{entry.action}' for {entry.entity_id} failed: {e}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Дожидается всех отложенных записей (при остановке и в тестах)."""
        if not self._pending:
            return
        _, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} audit entries still pending after drain timeout, cancelling")
            for task in not_done:
                task.cancel()
            await asyncio.gather(*not_done, return_exceptions=True)
