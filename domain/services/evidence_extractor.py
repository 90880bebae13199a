"""Turns raw sources (resume text, interview feedback) into atomic evidence items."""
import hashlib
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from domain.schemas import (
    Claim,
    ClaimType,
    Evidence,
    EvidenceSource,
    EvidenceStrength,
    InterviewInfo,
    ResumeAnalysis,
    SourceDetails,
)

KNOWN_SECTIONS = {
    "summary", "profile", "experience", "work experience", "professional experience",
    "employment", "education", "skills", "technical skills", "projects", "certifications",
    "achievements", "awards", "publications", "languages",
}

MAX_EVIDENCE_PER_CLAIM = 3
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？])\s+|\n+")
_DIGIT = re.compile(r"\d")


def skill_claim(skill: str) -> str:
    return f"Candidate is proficient in {skill}"


def experience_claim(years: float) -> str:
    return f"Candidate has {years:g} years of relevant experience"


def evidence_id(source: EvidenceSource, text: str, *scope: Optional[str]) -> str:
    raw = "|".join([source.value, text.strip(), *[s or "" for s in scope]])
    return "ev_" + hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


def _is_heading(line: str) -> bool:
    stripped = line.strip().rstrip(":").strip()
    if not stripped or len(stripped) > 40:
        return False
    if stripped.lower() in KNOWN_SECTIONS:
        return True
    return line.strip().endswith(":") or (stripped.isupper() and len(stripped.split()) <= 4)


def _sentences(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s and s.strip()]


class EvidenceExtractor:
    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def claims_from_resume_analysis(self, analysis: Optional[ResumeAnalysis]) -> List[Claim]:
        """One claim per skill, one for years of experience, one per stated strength."""
        if analysis is None:
            return []
        claims = [
            Claim(statement=skill_claim(skill), type=ClaimType.TECHNICAL_SKILL, keywords=[skill])
            for skill in analysis.skills if skill.strip()
        ]
        if analysis.experience > 0:
            years = int(analysis.experience)
            claims.append(Claim(
                statement=experience_claim(analysis.experience),
                type=ClaimType.EXPERIENCE_YEARS,
                keywords=[f"{years} year", f"{years}+ year", f"{years} yrs"],
            ))
        for strength in analysis.strengths:
            words = [w for w in re.findall(r"\w+", strength.lower()) if len(w) >= 5]
            claims.append(Claim(statement=strength, type=ClaimType.STRENGTH, keywords=words))
        return claims

    def extract_from_resume(self, resume_text: str, claims: Iterable[Claim],
                            document_id: Optional[str] = None) -> List[Evidence]:
        lines = resume_text.splitlines() if resume_text else []
        sections: List[Optional[str]] = []
        current = None
        for line in lines:
            if _is_heading(line):
                current = line.strip().rstrip(":").strip()
            sections.append(current)

        now = self._clock()
        found: List[Evidence] = []
        for claim in claims:
            hits = 0
            for idx, line in enumerate(lines):
                if hits >= MAX_EVIDENCE_PER_CLAIM:
                    break
                text = line.strip()
                if not text or _is_heading(line):
                    continue
                strength, confidence = self._grade_resume_line(text, claim)
                if strength is None:
                    continue
                hits += 1
                found.append(Evidence(
                    id=evidence_id(EvidenceSource.RESUME, text, claim.statement, document_id, str(idx)),
                    source=EvidenceSource.RESUME,
                    strength=strength,
                    confidence=confidence,
                    original_text=text,
                    claim=claim.statement,
                    highlighted_text=text,
                    verification_status="unverified",
                    source_details=SourceDetails(
                        document_id=document_id, section=sections[idx],
                        line_number=idx + 1, timestamp=now,
                    ),
                ))
        return found

    @staticmethod
    def _grade_resume_line(text: str, claim: Claim):
        lowered = text.lower()
        if claim.statement.lower() in lowered:
            return EvidenceStrength.DIRECT, 80.0
        if claim.type == ClaimType.STRENGTH:
            if not claim.keywords:
                return None, 0.0
            matched = sum(1 for k in claim.keywords if k in lowered)
            if matched >= min(2, len(claim.keywords)):
                return EvidenceStrength.INFERENTIAL, 40.0
            return None, 0.0
        if not any(k.lower() in lowered for k in claim.keywords):
            return None, 0.0
        if _DIGIT.search(text):
            return EvidenceStrength.MODERATE, 70.0
        return EvidenceStrength.WEAK, 55.0

    def extract_from_interview(self, interview: InterviewInfo) -> List[Evidence]:
        now = self._clock()
        interviewer = interview.interviewer_id or "system"
        found: List[Evidence] = []

        def add(text, source, strength, confidence, section, claim=None, highlighted=None):
            if not text or not str(text).strip():
                return
            text = str(text).strip()
            found.append(Evidence(
                id=evidence_id(source, text, claim, interview.id, section),
                source=source,
                strength=strength,
                confidence=confidence,
                original_text=text,
                claim=claim,
                highlighted_text=highlighted,
                verification_status="verified",
                source_details=SourceDetails(
                    interview_id=interview.id, interviewer_id=interviewer,
                    section=section, timestamp=now,
                ),
            ))

        for finding in interview.key_findings:
            add(finding, EvidenceSource.INTERVIEW_FEEDBACK, EvidenceStrength.STRONG, 85.0, "strengths")
        for concern in interview.concern_areas:
            add(concern, EvidenceSource.INTERVIEW_FEEDBACK, EvidenceStrength.STRONG, 85.0, "concerns")

        for star in interview.behavioral_evidence:
            full = "\n".join(
                f"{label}: {star.get(key, '')}"
                for key, label in (("situation", "Situation"), ("task", "Task"),
                                   ("action", "Action"), ("result", "Result"))
            )
            add(full, EvidenceSource.BEHAVIORAL_OBSERVATION, EvidenceStrength.DIRECT, 95.0,
                "behavioral_evidence", claim=star.get("claim"), highlighted=star.get("action"))

        for check in interview.skills_validation:
            level = check.get("level", "not_assessed")
            skill = check.get("skill")
            if not skill or not check.get("assessed", True) or level == "not_assessed":
                continue
            exceeded = level == "exceeded"
            add(f"{skill}: {level} - {check.get('evidence', '')}".rstrip(" -"),
                EvidenceSource.INTERVIEW_FEEDBACK,
                EvidenceStrength.DIRECT if exceeded else EvidenceStrength.STRONG,
                95.0 if exceeded else 80.0,
                "skills_validation", claim=skill_claim(skill))

        for sentence in _sentences(interview.feedback):
            add(sentence, EvidenceSource.INTERVIEW_FEEDBACK, EvidenceStrength.MODERATE, 70.0, "feedback")

        return found
