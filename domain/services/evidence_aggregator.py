"""Merges historical and new evidence, deduplicates it and flags contradictions.

Contradiction detection is a heuristic: evidence is grouped by the first
``CONTRADICTION_KEY_LENGTH`` characters of its normalized claim text (or of
the evidence text when no claim is attached). Any group holding both a
lower-trust item (a resume claim) and a higher-trust item (something an
interviewer observed) is reported. Prefix matching has unknown precision and
recall. It narrows down what a reviewer should look at and proves nothing.
"""
import hashlib
import logging
import re
from collections import OrderedDict
from typing import Iterable, List, Optional, Sequence

from domain.schemas import (
    AggregatedEvidence,
    ArgumentStructure,
    CandidateProfile,
    Claim,
    ClaimType,
    Contradiction,
    Evidence,
    EvidenceChain,
    EvidenceSource,
    EvidenceStrength,
    EvidenceSummary,
    SOURCE_LABELS,
    STRENGTH_RANK,
    STRENGTH_WEIGHTS,
)

logger = logging.getLogger(__name__)

CONTRADICTION_KEY_LENGTH = 50

LOWER_TRUST_SOURCES = {EvidenceSource.RESUME, EvidenceSource.PUBLIC_PROFILE}
HIGHER_TRUST_SOURCES = {
    EvidenceSource.INTERVIEW_FEEDBACK,
    EvidenceSource.BEHAVIORAL_OBSERVATION,
    EvidenceSource.TEST_RESULT,
    EvidenceSource.REFERENCE_CHECK,
    EvidenceSource.WORK_SAMPLE,
}

_PUNCT = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    return _SPACES.sub(" ", (text or "").strip().lower())


def content_hash(e: Evidence) -> str:
    raw = "|".join([
        e.source.value, e.strength.value, f"{float(e.confidence):g}", normalize_text(e.original_text),
    ])
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


def claim_key(e: Evidence, length: int = CONTRADICTION_KEY_LENGTH) -> str:
    text = _PUNCT.sub("", normalize_text(e.claim or e.original_text))
    return _SPACES.sub(" ", text).strip()[:length]


def claim_confidence(evidence: Sequence[Evidence]) -> float:
    """Strength-weighted mean of the individual confidences."""
    if not evidence:
        return 0.0
    total_weight = sum(STRENGTH_WEIGHTS[e.strength] for e in evidence)
    weighted = sum(e.confidence * STRENGTH_WEIGHTS[e.strength] for e in evidence)
    return min(100.0, weighted / total_weight)


def source_label(source: EvidenceSource) -> str:
    return SOURCE_LABELS.get(source, source.value)


def is_strong(e: Evidence) -> bool:
    return e.strength in (EvidenceStrength.DIRECT, EvidenceStrength.STRONG)


class EvidenceAggregator:
    def __init__(self, key_length: int = CONTRADICTION_KEY_LENGTH):
        self.key_length = key_length

    def aggregate(self, historical: Iterable[Evidence], new: Iterable[Evidence]) -> AggregatedEvidence:
        everything = list(historical) + list(new)
        deduped = self.deduplicate(everything)
        try:
            contradictions = self.detect_contradictions(deduped)
        except Exception:
            logger.exception("Contradiction detection failed; continuing without contradictions")
            contradictions = []
        return AggregatedEvidence(all=everything, deduped=deduped, contradictions=contradictions)

    def deduplicate(self, items: Iterable[Evidence]) -> List[Evidence]:
        seen_ids = set()
        seen_hashes = set()
        out: List[Evidence] = []
        for e in items:
            digest = content_hash(e)
            if (e.id and e.id in seen_ids) or digest in seen_hashes:
                continue
            if e.id:
                seen_ids.add(e.id)
            seen_hashes.add(digest)
            out.append(e)
        return out

    def detect_contradictions(self, evidence: Sequence[Evidence]) -> List[Contradiction]:
        groups: "OrderedDict[str, List[Evidence]]" = OrderedDict()
        for e in evidence:
            key = claim_key(e, self.key_length)
            if key:
                groups.setdefault(key, []).append(e)

        found: List[Contradiction] = []
        for key, items in groups.items():
            lower = [e for e in items if e.source in LOWER_TRUST_SOURCES]
            higher = [e for e in items if e.source in HIGHER_TRUST_SOURCES]
            if not lower or not higher:
                continue
            best = max(higher, key=lambda e: (STRENGTH_RANK[e.strength], e.confidence))
            for claimed in lower:
                # interview evidence outranks resume evidence of equal or lower strength
                interview_wins = STRENGTH_RANK[best.strength] >= STRENGTH_RANK[claimed.strength]
                preferred = best if interview_wins else claimed
                found.append(Contradiction(
                    key=key,
                    lower_trust=claimed,
                    higher_trust=best,
                    preferred_evidence_id=preferred.id,
                    note=(
                        f"{source_label(claimed.source)} ({claimed.strength.value}) vs "
                        f"{source_label(best.source)} ({best.strength.value}); "
                        f"prefer {source_label(preferred.source).lower()}"
                    ),
                ))
        if found:
            logger.info(f"Detected {len(found)} potential contradiction(s) across {len(groups)} claim groups")
        return found

    def summarize(self, aggregated: AggregatedEvidence) -> EvidenceSummary:
        items = aggregated.deduped
        if not items:
            return EvidenceSummary(contradictions=len(aggregated.contradictions))
        sources = list(OrderedDict.fromkeys(source_label(e.source) for e in items))
        return EvidenceSummary(
            total_evidence=len(items),
            strong_evidence=sum(1 for e in items if is_strong(e)),
            contradictions=len(aggregated.contradictions),
            average_confidence=round(sum(e.confidence for e in items) / len(items), 2),
            main_sources=sources,
        )

    def flatten_profile_evidence(self, profile: Optional[CandidateProfile]) -> List[Evidence]:
        """Recover every evidence item referenced by a stored profile version."""
        if profile is None:
            return []
        data = profile.profile_data or {}
        raw: List[dict] = list(data.get("evidence") or [])
        for group in ("technical_skills", "soft_skills"):
            for skill in data.get(group) or []:
                raw.extend(skill.get("evidence") or [])
                chain = skill.get("evidence_chain") or {}
                for part in ("primary_evidence", "supporting_evidence", "contradictory_evidence"):
                    raw.extend(chain.get(part) or [])

        recovered: List[Evidence] = []
        for item in raw:
            try:
                recovered.append(Evidence.model_validate(item))
            except Exception as exc:
                logger.warning(f"Skipping malformed stored evidence in profile v{profile.version}: {exc}")
        return self.deduplicate(recovered)

    def build_claim(self, statement: str, claim_type: ClaimType, evidence: Sequence[Evidence]) -> Claim:
        evidence = list(evidence)
        if evidence:
            labels = list(OrderedDict.fromkeys(source_label(e.source) for e in evidence))
            avg = sum(e.confidence for e in evidence) / len(evidence)
            summary = f"Based on {len(evidence)} evidence item(s) from {', '.join(labels)}; mean confidence {avg:.0f}%"
        else:
            summary = "No supporting evidence"
        return Claim(
            statement=statement,
            type=claim_type,
            importance=self._importance(claim_type),
            supporting_evidence=evidence,
            evidence_summary=summary,
            confidence_score=round(claim_confidence(evidence), 2),
        )

    def build_chain(self, claim: Claim, contradictions: Sequence[Contradiction] = ()) -> EvidenceChain:
        primary = [e for e in claim.supporting_evidence if is_strong(e)]
        supporting = [
            e for e in claim.supporting_evidence
            if e.strength in (EvidenceStrength.MODERATE, EvidenceStrength.WEAK)
        ]
        ids = {e.id for e in claim.supporting_evidence}
        contradictory: List[Evidence] = []
        for c in contradictions:
            if c.lower_trust.id in ids or c.higher_trust.id in ids:
                loser = c.lower_trust if c.preferred_evidence_id == c.higher_trust.id else c.higher_trust
                if loser.id not in {e.id for e in contradictory}:
                    contradictory.append(loser)

        premise = [
            f"Per {source_label(e.source).lower()}: {(e.highlighted_text or e.original_text)[:100]}"
            for e in primary
        ]
        inference = [
            f"{len(primary)} primary and {len(supporting)} supporting evidence item(s)",
            f"Weighted confidence {claim.confidence_score:.0f}%",
        ]
        if contradictory:
            inference.append(f"{len(contradictory)} contradicting item(s) outranked")
        return EvidenceChain(
            claim=claim.statement,
            primary_evidence=primary,
            supporting_evidence=supporting,
            contradictory_evidence=contradictory,
            argument_structure=ArgumentStructure(
                premise=premise, inference=inference, conclusion=claim.statement),
        )

    @staticmethod
    def _importance(claim_type: ClaimType) -> str:
        if claim_type in (ClaimType.RED_FLAG, ClaimType.RISK_FACTOR):
            return "critical"
        if claim_type in (ClaimType.TECHNICAL_SKILL, ClaimType.DOMAIN_EXPERTISE, ClaimType.LEADERSHIP):
            return "high"
        if claim_type in (ClaimType.SOFT_SKILL, ClaimType.CULTURE_FIT, ClaimType.COMMUNICATION):
            return "medium"
        return "low"
