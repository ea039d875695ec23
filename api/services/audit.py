"""Audit Log writer — durable record of every state-changing driver action."""

import logging
import uuid

from db.repository import as_uuid
from models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditLogger:
    """Write-only. A failed write is logged and reported as ``None``, never raised."""

    def __init__(self, repo_scope):
        self._repo_scope = repo_scope

    async def record(
        self,
        action: str,
        entity_type: str,
        entity_id,
        actor_id,
        details: dict | None = None,
        notes: str | None = None,
        location: dict | None = None,
        route_id=None,
    ) -> uuid.UUID | None:
        entry = AuditLog(
            id=uuid.uuid4(),
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor_id=as_uuid(actor_id),
            route_id=as_uuid(route_id),
            location=location,
            details=dict(details or {}),
            notes=notes,
        )
        try:
            async with self._repo_scope() as repo:
                repo.add(entry)
                await repo.commit()
        except Exception as e:
            logger.error("Audit log write failed for %s on %s %s: %s", action, entity_type, entity_id, e)
            return None
        return entry.id
