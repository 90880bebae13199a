from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from infra.db.models import AiTokenUsageRecord
from infra.db.session import SessionLocal


class UsageRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._sessions = session_factory

    def save(self, *, operation: str, model: str, prompt_tokens: int, completion_tokens: int,
             estimated_cost: float, success: bool, latency_ms: int, retry_count: int,
             entity_id: Optional[str] = None, error_message: Optional[str] = None) -> int:
        with self._sessions() as s:
            rec = AiTokenUsageRecord(
                operation=operation,
                entity_id=entity_id,
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                estimated_cost=estimated_cost,
                success=success,
                error_message=error_message,
                latency_ms=latency_ms,
                retry_count=retry_count,
            )
            s.add(rec)
            s.commit()
            return rec.id

    def list_by_operation(self, operation: str) -> List[Dict]:
        with self._sessions() as s:
            rows = s.scalars(
                select(AiTokenUsageRecord)
                .where(AiTokenUsageRecord.operation == operation)
                .order_by(AiTokenUsageRecord.id.asc())
            ).all()
            return [
                {
                    "operation": r.operation,
                    "entity_id": r.entity_id,
                    "model": r.model,
                    "prompt_tokens": r.prompt_tokens,
                    "completion_tokens": r.completion_tokens,
                    "total_tokens": r.total_tokens,
                    "estimated_cost": r.estimated_cost,
                    "success": r.success,
                    "error_message": r.error_message,
                    "latency_ms": r.latency_ms,
                    "retry_count": r.retry_count,
                }
                for r in rows
            ]
