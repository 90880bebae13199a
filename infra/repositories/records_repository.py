import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from domain.schemas import CandidateInfo, InterviewInfo, JobInfo, ResumeAnalysis
from infra.db.models import CandidateRecord, InterviewRecord, JobRecord
from infra.db.session import SessionLocal


def _to_interview(rec: InterviewRecord) -> InterviewInfo:
    return InterviewInfo(
        id=rec.id,
        candidate_id=rec.candidate_id,
        job_id=rec.job_id,
        round=rec.round,
        type=rec.type,
        status=rec.status,
        interviewer_id=rec.interviewer_id,
        feedback=rec.feedback,
        interviewer_notes=rec.interviewer_notes,
        transcription=rec.transcription,
        rating=rec.rating,
        recommendation=rec.recommendation,
        key_findings=list(rec.key_findings or []),
        concern_areas=list(rec.concern_areas or []),
        skills_validation=list(rec.skills_validation or []),
        behavioral_evidence=list(rec.behavioral_evidence or []),
    )


class RecordsRepository:
    """By-id readers for candidates, jobs and interviews, plus the inserts that seed them."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._sessions = session_factory

    def add_candidate(self, name: str, *, resume_text: Optional[str] = None,
                      resume_analysis: Optional[ResumeAnalysis] = None,
                      position: Optional[str] = None, location: Optional[str] = None,
                      candidate_id: Optional[str] = None) -> str:
        cid = candidate_id or f"cand_{uuid.uuid4().hex}"
        with self._sessions() as s:
            s.add(CandidateRecord(
                id=cid, name=name, position=position, location=location,
                resume_text=resume_text,
                resume_analysis=resume_analysis.model_dump() if resume_analysis else None,
            ))
            s.commit()
        return cid

    def add_job(self, title: str, description: str = "", requirements: Optional[List[str]] = None,
                job_id: Optional[str] = None) -> str:
        jid = job_id or f"job_{uuid.uuid4().hex}"
        with self._sessions() as s:
            s.add(JobRecord(id=jid, title=title, description=description,
                            requirements=requirements or []))
            s.commit()
        return jid

    def add_interview(self, candidate_id: str, round: int = 1, *,
                      interview_id: Optional[str] = None, **fields: Any) -> str:
        iid = interview_id or f"iv_{uuid.uuid4().hex}"
        with self._sessions() as s:
            s.add(InterviewRecord(id=iid, candidate_id=candidate_id, round=round, **fields))
            s.commit()
        return iid

    def get_candidate(self, candidate_id: str) -> Optional[CandidateInfo]:
        with self._sessions() as s:
            rec = s.get(CandidateRecord, candidate_id)
            if not rec:
                return None
            analysis = ResumeAnalysis(**rec.resume_analysis) if rec.resume_analysis else None
            return CandidateInfo(
                id=rec.id, name=rec.name, position=rec.position, location=rec.location,
                resume_text=rec.resume_text, resume_analysis=analysis,
            )

    def get_job(self, job_id: str) -> Optional[JobInfo]:
        with self._sessions() as s:
            rec = s.get(JobRecord, job_id)
            if not rec:
                return None
            return JobInfo(id=rec.id, title=rec.title, description=rec.description or "",
                           requirements=list(rec.requirements or []))

    def get_interview(self, interview_id: str) -> Optional[InterviewInfo]:
        with self._sessions() as s:
            rec = s.get(InterviewRecord, interview_id)
            return _to_interview(rec) if rec else None

    def list_interviews_by_candidate(self, candidate_id: str) -> List[InterviewInfo]:
        with self._sessions() as s:
            rows = s.scalars(
                select(InterviewRecord)
                .where(InterviewRecord.candidate_id == candidate_id)
                .order_by(InterviewRecord.round.asc())
            ).all()
            return [_to_interview(r) for r in rows]

    def update_interview(self, interview_id: str, updates: Dict[str, Any]) -> None:
        with self._sessions() as s:
            rec = s.get(InterviewRecord, interview_id)
            if not rec:
                return
            for k, v in updates.items():
                setattr(rec, k, v)
            s.commit()
