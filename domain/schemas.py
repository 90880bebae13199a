from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class EvidenceSource(str, Enum):
    RESUME = "resume"
    INTERVIEW_FEEDBACK = "interview_feedback"
    BEHAVIORAL_OBSERVATION = "behavioral_observation"
    TEST_RESULT = "test_result"
    REFERENCE_CHECK = "reference_check"
    WORK_SAMPLE = "work_sample"
    AI_ANALYSIS = "ai_analysis"
    PUBLIC_PROFILE = "public_profile"
    CERTIFICATION = "certification"
    PORTFOLIO = "portfolio"


class EvidenceStrength(str, Enum):
    DIRECT = "direct"
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    INFERENTIAL = "inferential"


# direct > strong > moderate > weak > inferential
STRENGTH_RANK: Dict[EvidenceStrength, int] = {
    EvidenceStrength.DIRECT: 5,
    EvidenceStrength.STRONG: 4,
    EvidenceStrength.MODERATE: 3,
    EvidenceStrength.WEAK: 2,
    EvidenceStrength.INFERENTIAL: 1,
}

STRENGTH_WEIGHTS: Dict[EvidenceStrength, float] = {
    EvidenceStrength.DIRECT: 1.0,
    EvidenceStrength.STRONG: 0.8,
    EvidenceStrength.MODERATE: 0.6,
    EvidenceStrength.WEAK: 0.4,
    EvidenceStrength.INFERENTIAL: 0.3,
}

SOURCE_LABELS: Dict[EvidenceSource, str] = {
    EvidenceSource.RESUME: "Resume",
    EvidenceSource.INTERVIEW_FEEDBACK: "Interview feedback",
    EvidenceSource.BEHAVIORAL_OBSERVATION: "Behavioral observation",
    EvidenceSource.TEST_RESULT: "Test result",
    EvidenceSource.REFERENCE_CHECK: "Reference check",
    EvidenceSource.WORK_SAMPLE: "Work sample",
    EvidenceSource.AI_ANALYSIS: "AI analysis",
    EvidenceSource.PUBLIC_PROFILE: "Public profile",
    EvidenceSource.CERTIFICATION: "Certification",
    EvidenceSource.PORTFOLIO: "Portfolio",
}


class SourceDetails(BaseModel):
    document_id: Optional[str] = None
    interview_id: Optional[str] = None
    interviewer_id: Optional[str] = None
    section: Optional[str] = None
    line_number: Optional[int] = None
    timestamp: Optional[datetime] = None


class Evidence(BaseModel):
    id: Optional[str] = None
    source: EvidenceSource
    strength: EvidenceStrength
    confidence: float = Field(..., ge=0, le=100)
    original_text: str
    claim: Optional[str] = None
    highlighted_text: Optional[str] = None
    verification_status: Literal["verified", "unverified", "disputed"] = "unverified"
    source_details: SourceDetails = Field(default_factory=SourceDetails)


class Contradiction(BaseModel):
    """Two differently-sourced evidence items about the same (prefix-matched) claim.

    Derived on every aggregation and never persisted on its own.
    """
    key: str
    lower_trust: Evidence
    higher_trust: Evidence
    preferred_evidence_id: Optional[str] = None
    note: str = ""

    @property
    def evidence_ids(self) -> List[Optional[str]]:
        return [self.lower_trust.id, self.higher_trust.id]


class AggregatedEvidence(BaseModel):
    all: List[Evidence] = Field(default_factory=list)
    deduped: List[Evidence] = Field(default_factory=list)
    contradictions: List[Contradiction] = Field(default_factory=list)


class EvidenceSummary(BaseModel):
    total_evidence: int = 0
    strong_evidence: int = 0
    contradictions: int = 0
    average_confidence: float = 0.0
    main_sources: List[str] = Field(default_factory=list)


class ClaimType(str, Enum):
    TECHNICAL_SKILL = "technical_skill"
    SOFT_SKILL = "soft_skill"
    EXPERIENCE_YEARS = "experience_years"
    DOMAIN_EXPERTISE = "domain_expertise"
    LEADERSHIP = "leadership"
    COMMUNICATION = "communication"
    CULTURE_FIT = "culture_fit"
    STRENGTH = "strength"
    CONCERN = "concern"
    RISK_FACTOR = "risk_factor"
    RED_FLAG = "red_flag"


class Claim(BaseModel):
    statement: str
    type: ClaimType
    keywords: List[str] = Field(default_factory=list)
    importance: Literal["critical", "high", "medium", "low"] = "low"
    supporting_evidence: List[Evidence] = Field(default_factory=list)
    evidence_summary: str = ""
    confidence_score: float = 0.0


class ArgumentStructure(BaseModel):
    premise: List[str] = Field(default_factory=list)
    inference: List[str] = Field(default_factory=list)
    conclusion: str = ""


class EvidenceChain(BaseModel):
    claim: str
    primary_evidence: List[Evidence] = Field(default_factory=list)
    supporting_evidence: List[Evidence] = Field(default_factory=list)
    contradictory_evidence: List[Evidence] = Field(default_factory=list)
    argument_structure: ArgumentStructure = Field(default_factory=ArgumentStructure)


class NamedText(BaseModel):
    name: str
    text: str
    max_tokens: Optional[int] = None
    optional: bool = False


class ResumeAnalysis(BaseModel):
    summary: str = ""
    skills: List[str] = Field(default_factory=list)
    experience: float = 0
    education: str = ""
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)


class CandidateInfo(BaseModel):
    id: str
    name: str
    position: Optional[str] = None
    location: Optional[str] = None
    resume_text: Optional[str] = None
    resume_analysis: Optional[ResumeAnalysis] = None


class JobInfo(BaseModel):
    id: str
    title: str
    description: str = ""
    requirements: List[str] = Field(default_factory=list)


class InterviewInfo(BaseModel):
    id: str
    candidate_id: str
    job_id: Optional[str] = None
    round: int = 1
    type: str = "general"
    status: str = "scheduled"
    interviewer_id: Optional[str] = None
    feedback: Optional[str] = None
    interviewer_notes: Optional[str] = None
    transcription: Optional[str] = None
    rating: Optional[int] = None
    recommendation: Optional[str] = None
    key_findings: List[str] = Field(default_factory=list)
    concern_areas: List[str] = Field(default_factory=list)
    skills_validation: List[Dict[str, Any]] = Field(default_factory=list)
    behavioral_evidence: List[Dict[str, Any]] = Field(default_factory=list)


TriggerKind = Literal["resume", "interview", "final_evaluation"]


class ProfileTrigger(BaseModel):
    kind: TriggerKind
    interview_id: Optional[str] = None
    job_id: Optional[str] = None
    resume_analysis: Optional[ResumeAnalysis] = None

    @property
    def key(self) -> str:
        if self.kind == "interview":
            return f"interview:{self.interview_id}"
        return self.kind


class CandidateProfile(BaseModel):
    """One immutable version of a candidate's assessment."""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    candidate_id: str
    job_id: Optional[str] = None
    version: int = Field(..., ge=1)
    stage: str
    profile_data: Dict[str, Any] = Field(default_factory=dict)
    overall_score: float = Field(0, ge=0, le=100)
    strengths: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)
    gaps: List[str] = Field(default_factory=list)
    data_sources: List[str] = Field(default_factory=list)
    ai_summary: str = ""
    created_at: Optional[datetime] = None


class ProfileUpdateRequest(BaseModel):
    kind: TriggerKind
    interview_id: Optional[str] = None
    job_id: Optional[str] = None
    resume_analysis: Optional[ResumeAnalysis] = None

    def to_trigger(self) -> ProfileTrigger:
        return ProfileTrigger(**self.model_dump())


class ErrorResponse(BaseModel):
    kind: str
    detail: str
    retryable: bool = False
