import uuid
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from domain.errors import InputValidationError, VersionConflictError
from domain.schemas import CandidateProfile
from infra.db.models import CandidateProfileRecord
from infra.db.session import SessionLocal


def _to_profile(rec: CandidateProfileRecord) -> CandidateProfile:
    return CandidateProfile(
        id=rec.id,
        candidate_id=rec.candidate_id,
        job_id=rec.job_id,
        version=rec.version,
        stage=rec.stage,
        profile_data=rec.profile_data or {},
        overall_score=float(rec.overall_score or 0.0),
        strengths=list(rec.strengths or []),
        concerns=list(rec.concerns or []),
        gaps=list(rec.gaps or []),
        data_sources=list(rec.data_sources or []),
        ai_summary=rec.ai_summary or "",
        created_at=rec.created_at,
    )


class ProfilesRepository:
    """Append-only store of profile versions.

    ``create`` is the only write. It refuses any version other than
    ``max(version) + 1`` for the candidate, and the unique constraint on
    ``(candidate_id, version)`` backs that up across processes.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._sessions = session_factory

    def create(self, profile: CandidateProfile) -> CandidateProfile:
        if not profile.candidate_id:
            raise InputValidationError("candidate_id is required")
        if not profile.stage:
            raise InputValidationError("stage is required")
        if not profile.profile_data:
            raise InputValidationError("profile_data is required")

        pid = f"profile_{uuid.uuid4().hex}"
        with self._sessions() as s:
            current = s.scalar(
                select(func.max(CandidateProfileRecord.version))
                .where(CandidateProfileRecord.candidate_id == profile.candidate_id)
            ) or 0
            if profile.version != current + 1:
                raise VersionConflictError(profile.candidate_id, profile.version)
            rec = CandidateProfileRecord(
                id=pid,
                candidate_id=profile.candidate_id,
                job_id=profile.job_id,
                version=profile.version,
                stage=profile.stage,
                profile_data=profile.profile_data,
                overall_score=profile.overall_score,
                strengths=profile.strengths,
                concerns=profile.concerns,
                gaps=profile.gaps,
                data_sources=profile.data_sources,
                ai_summary=profile.ai_summary,
            )
            s.add(rec)
            try:
                s.commit()
            except IntegrityError as exc:
                s.rollback()
                raise VersionConflictError(profile.candidate_id, profile.version) from exc
            s.refresh(rec)
            return _to_profile(rec)

    def list_by_candidate(self, candidate_id: str) -> List[CandidateProfile]:
        """All versions for a candidate, oldest first."""
        with self._sessions() as s:
            rows = s.scalars(
                select(CandidateProfileRecord)
                .where(CandidateProfileRecord.candidate_id == candidate_id)
                .order_by(CandidateProfileRecord.version.asc())
            ).all()
            return [_to_profile(r) for r in rows]

    def latest_by_candidate(self, candidate_id: str) -> Optional[CandidateProfile]:
        with self._sessions() as s:
            rec = s.scalars(
                select(CandidateProfileRecord)
                .where(CandidateProfileRecord.candidate_id == candidate_id)
                .order_by(CandidateProfileRecord.version.desc())
                .limit(1)
            ).first()
            return _to_profile(rec) if rec else None

    def get_by_version(self, candidate_id: str, version: int) -> Optional[CandidateProfile]:
        if version < 1:
            raise InputValidationError("version must be a positive integer")
        with self._sessions() as s:
            rec = s.scalars(
                select(CandidateProfileRecord).where(
                    CandidateProfileRecord.candidate_id == candidate_id,
                    CandidateProfileRecord.version == version,
                )
            ).first()
            return _to_profile(rec) if rec else None
