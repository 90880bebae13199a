from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from infra.db.session import Base


class CandidateRecord(Base):
    __tablename__ = "candidates"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    position = Column(String, nullable=True)
    location = Column(String, nullable=True)
    resume_text = Column(Text, nullable=True)
    resume_analysis = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    profiles = relationship("CandidateProfileRecord", back_populates="candidate")


class JobRecord(Base):
    __tablename__ = "jobs"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    requirements = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class InterviewRecord(Base):
    __tablename__ = "interviews"
    id = Column(String, primary_key=True)
    candidate_id = Column(String, ForeignKey("candidates.id"), nullable=False)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=True)
    round = Column(Integer, nullable=False, default=1)
    type = Column(String, nullable=False, default="general")
    status = Column(String, nullable=False, default="scheduled")
    interviewer_id = Column(String, nullable=True)
    feedback = Column(Text, nullable=True)
    interviewer_notes = Column(Text, nullable=True)
    transcription = Column(Text, nullable=True)
    rating = Column(Integer, nullable=True)  # 1-5
    recommendation = Column(String, nullable=True)  # hire | reject | next-round
    key_findings = Column(JSON, nullable=True)
    concern_areas = Column(JSON, nullable=True)
    skills_validation = Column(JSON, nullable=True)
    behavioral_evidence = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class CandidateProfileRecord(Base):
    __tablename__ = "candidate_profiles"
    __table_args__ = (
        UniqueConstraint("candidate_id", "version", name="uq_candidate_profile_version"),
    )
    id = Column(String, primary_key=True)
    candidate_id = Column(String, ForeignKey("candidates.id"), nullable=False, index=True)
    job_id = Column(String, nullable=True)
    version = Column(Integer, nullable=False)
    stage = Column(String, nullable=False)  # resume | after_interview_<n> | final_evaluation
    profile_data = Column(JSON, nullable=False)
    overall_score = Column(Float, nullable=True)
    strengths = Column(JSON, nullable=True)
    concerns = Column(JSON, nullable=True)
    gaps = Column(JSON, nullable=True)
    data_sources = Column(JSON, nullable=True)
    ai_summary = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    candidate = relationship("CandidateRecord", back_populates="profiles")


class AiTokenUsageRecord(Base):
    __tablename__ = "ai_token_usage"
    id = Column(Integer, primary_key=True, autoincrement=True)
    operation = Column(String, nullable=False)
    entity_id = Column(String, nullable=True)
    model = Column(String, nullable=False)
    prompt_tokens = Column(Integer, nullable=False, default=0)
    completion_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    estimated_cost = Column(Float, nullable=False, default=0.0)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    latency_ms = Column(Integer, nullable=False, default=0)
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
