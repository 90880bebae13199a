import logging
from dataclasses import dataclass, field
from typing import List, Optional

from app.settings import settings
from domain.errors import InputValidationError, VersionConflictError
from domain.schemas import (
    AggregatedEvidence,
    CandidateInfo,
    CandidateProfile,
    ClaimType,
    Evidence,
    EvidenceSummary,
    InterviewInfo,
    JobInfo,
    NamedText,
    ProfileTrigger,
    ResumeAnalysis,
)
from domain.services.analysis_invoker import AnalysisInvoker, AnalysisRequest
from domain.services.evidence_aggregator import EvidenceAggregator
from domain.services.evidence_extractor import EvidenceExtractor, skill_claim
from domain.services.prompt_budgeter import PromptBudgeter, sanitize_for_prompt
from infra.llm.client import ProfileAnalysisPayload
from infra.llm.prompts import (
    FINAL_EVALUATION_SYSTEM_PROMPT,
    INITIAL_PROFILE_SYSTEM_PROMPT,
    UPDATE_PROFILE_SYSTEM_PROMPT,
    render_user_prompt,
)
from infra.repositories.profiles_repository import ProfilesRepository
from infra.repositories.records_repository import RecordsRepository

logger = logging.getLogger(__name__)

MAX_CONTRADICTIONS_IN_PROMPT = 5


def stage_for(trigger: ProfileTrigger, interview: Optional[InterviewInfo] = None) -> str:
    if trigger.kind == "interview":
        return f"after_interview_{interview.round}"
    return trigger.kind


def stage_label(stage: str) -> str:
    if stage == "resume":
        return "Resume"
    if stage.startswith("after_interview_"):
        return f"Interview round {stage.rsplit('_', 1)[-1]}"
    return stage.replace("_", " ").capitalize()


@dataclass
class BuildContext:
    candidate: CandidateInfo
    trigger: ProfileTrigger
    stage: str
    prior: Optional[CandidateProfile] = None
    job: Optional[JobInfo] = None
    interview: Optional[InterviewInfo] = None
    interviews: List[InterviewInfo] = field(default_factory=list)
    resume_analysis: Optional[ResumeAnalysis] = None

    @property
    def job_id(self) -> Optional[str]:
        if self.job:
            return self.job.id
        return self.prior.job_id if self.prior else None


class ProfileBuilder:
    """Extract -> aggregate -> budget -> analyse -> persist one new profile version.

    No locking happens here. The update coordinator guarantees at most one
    build per ``candidate:trigger`` key.
    """

    def __init__(self, profiles: ProfilesRepository, records: RecordsRepository,
                 invoker: AnalysisInvoker, *, extractor: Optional[EvidenceExtractor] = None,
                 aggregator: Optional[EvidenceAggregator] = None,
                 budgeter: Optional[PromptBudgeter] = None, model: Optional[str] = None):
        self.profiles = profiles
        self.records = records
        self.invoker = invoker
        self.extractor = extractor or EvidenceExtractor()
        self.aggregator = aggregator or EvidenceAggregator()
        self.budgeter = budgeter or PromptBudgeter()
        self.model = model or settings.analysis_model

    async def build(self, candidate_id: str, trigger: ProfileTrigger) -> CandidateProfile:
        ctx = self._load_context(candidate_id, trigger)
        logger.info(f"[{candidate_id}:{trigger.key}] building profile for stage {ctx.stage}")

        historical = self._recover_history(ctx)
        new_evidence = self._extract(ctx)
        aggregated = self.aggregator.aggregate(historical, new_evidence)
        summary = self.aggregator.summarize(aggregated)
        logger.info(
            f"[{candidate_id}:{trigger.key}] evidence: {len(historical)} historical, "
            f"{len(new_evidence)} new, {len(aggregated.deduped)} after dedup, "
            f"{len(aggregated.contradictions)} contradiction(s)"
        )

        parts = self.budgeter.fit(self._prompt_parts(ctx, aggregated, summary))
        logger.info(
            f"[{candidate_id}:{trigger.key}] prompt fitted: {[p.name for p in parts]} "
            f"~{self.budgeter.total_tokens(parts)} tokens"
        )

        request = AnalysisRequest(
            operation=f"profile_{trigger.kind}",
            model=self.model,
            entity_id=candidate_id,
            messages=[
                {"role": "system", "content": self._system_prompt(ctx)},
                {"role": "user", "content": render_user_prompt(parts)
                 + "\n\nReturn the complete profile as JSON."},
            ],
        )
        payload = await self.invoker.invoke(request, ProfileAnalysisPayload)

        profile_data = self._assemble_profile_data(payload, aggregated, summary)
        return self._persist(ctx, payload, profile_data)

    def _load_context(self, candidate_id: str, trigger: ProfileTrigger) -> BuildContext:
        if not candidate_id or not candidate_id.strip():
            raise InputValidationError("candidate_id must not be empty")
        candidate = self.records.get_candidate(candidate_id)
        if not candidate:
            raise InputValidationError(f"Candidate {candidate_id} not found", not_found=True)

        prior = self.profiles.latest_by_candidate(candidate_id)
        interview = None
        if trigger.kind == "resume":
            analysis = trigger.resume_analysis or candidate.resume_analysis
            if not candidate.resume_text and not (analysis and analysis.skills):
                raise InputValidationError("Resume data is incomplete; cannot build a profile")
        else:
            analysis = candidate.resume_analysis
            if prior is None:
                raise InputValidationError(
                    f"No existing profile found for candidate {candidate_id}", not_found=True)

        if trigger.kind == "interview":
            if not trigger.interview_id:
                raise InputValidationError("interview_id is required for interview triggers")
            interview = self.records.get_interview(trigger.interview_id)
            if not interview:
                raise InputValidationError(f"Interview {trigger.interview_id} not found", not_found=True)
            if interview.candidate_id != candidate_id:
                raise InputValidationError(
                    f"Interview {interview.id} does not belong to candidate {candidate_id}")
            if not (interview.feedback or interview.interviewer_notes or interview.transcription):
                logger.warning(f"Interview {interview.id} has no feedback, notes or transcript")

        job_id = trigger.job_id or (interview.job_id if interview else None) or (prior.job_id if prior else None)
        job = self.records.get_job(job_id) if job_id else None
        if job_id and not job:
            logger.warning(f"Job {job_id} not found; building without job context")

        interviews = [] if trigger.kind == "resume" else self._earlier_rounds(candidate_id, interview)
        return BuildContext(
            candidate=candidate, trigger=trigger, stage=stage_for(trigger, interview), prior=prior,
            job=job, interview=interview, interviews=interviews, resume_analysis=analysis,
        )

    def _earlier_rounds(self, candidate_id: str, interview: Optional[InterviewInfo]) -> List[InterviewInfo]:
        """Rounds that already happened, excluding the triggering one and anything after it."""
        rounds = []
        for iv in self.records.list_interviews_by_candidate(candidate_id):
            if iv.status != "completed" and iv.rating is None:
                continue
            if interview is not None and (iv.id == interview.id or iv.round >= interview.round):
                continue
            rounds.append(iv)
        return rounds

    def _recover_history(self, ctx: BuildContext) -> List[Evidence]:
        try:
            return self.aggregator.flatten_profile_evidence(ctx.prior)
        except Exception:
            logger.exception(f"[{ctx.candidate.id}] could not recover evidence from prior profile")
            return []

    def _extract(self, ctx: BuildContext) -> List[Evidence]:
        try:
            if ctx.trigger.kind == "resume":
                claims = self.extractor.claims_from_resume_analysis(ctx.resume_analysis)
                return self.extractor.extract_from_resume(
                    ctx.candidate.resume_text or "", claims, document_id=ctx.candidate.id)
            if ctx.trigger.kind == "interview":
                return self.extractor.extract_from_interview(ctx.interview)
            return []
        except Exception:
            logger.exception(f"[{ctx.candidate.id}:{ctx.trigger.key}] evidence extraction failed; using none")
            return []

    def _system_prompt(self, ctx: BuildContext) -> str:
        if ctx.trigger.kind == "resume":
            return INITIAL_PROFILE_SYSTEM_PROMPT
        if ctx.trigger.kind == "final_evaluation":
            return FINAL_EVALUATION_SYSTEM_PROMPT
        return UPDATE_PROFILE_SYSTEM_PROMPT

    def _prompt_parts(self, ctx: BuildContext, aggregated: AggregatedEvidence,
                      summary: EvidenceSummary) -> List[NamedText]:
        c = ctx.candidate
        parts = [NamedText(name="candidate", text="\n".join([
            f"Name: {sanitize_for_prompt(c.name)}",
            f"Position: {sanitize_for_prompt(c.position or 'not specified')}",
            f"Location: {sanitize_for_prompt(c.location or 'not provided')}",
        ]))]

        if ctx.prior:
            p = ctx.prior
            parts.append(NamedText(name="profile_summary", text="\n".join([
                f"Version {p.version} (stage {p.stage}), overall score {p.overall_score:g}",
                f"Strengths: {', '.join(p.strengths) or 'none'}",
                f"Concerns: {', '.join(p.concerns) or 'none'}",
                f"Gaps: {', '.join(p.gaps) or 'none'}",
                f"Summary: {sanitize_for_prompt(p.ai_summary)}",
            ])))

        lines = [
            f"{summary.total_evidence} evidence item(s), {summary.strong_evidence} direct/strong, "
            f"mean confidence {summary.average_confidence:.0f}%",
            f"Sources: {', '.join(summary.main_sources) or 'none'}",
        ]
        for contradiction in aggregated.contradictions[:MAX_CONTRADICTIONS_IN_PROMPT]:
            lines.append(
                f"Contradiction on '{contradiction.key}': resume says "
                f"\"{contradiction.lower_trust.original_text}\" but interview says "
                f"\"{contradiction.higher_trust.original_text}\" ({contradiction.note})"
            )
        parts.append(NamedText(name="evidence_summary", text="\n".join(lines)))

        if ctx.trigger.kind == "resume":
            a = ctx.resume_analysis
            resume_lines = []
            if a:
                resume_lines += [
                    f"Summary: {sanitize_for_prompt(a.summary)}",
                    f"Skills: {', '.join(sanitize_for_prompt(s) for s in a.skills)}",
                    f"Experience: {a.experience:g} years",
                    f"Education: {sanitize_for_prompt(a.education)}",
                    f"Strengths: {', '.join(a.strengths)}",
                    f"Weaknesses: {', '.join(a.weaknesses)}",
                ]
            if c.resume_text:
                resume_lines.append(f"Full text:\n{sanitize_for_prompt(c.resume_text)}")
            parts.append(NamedText(name="resume", text="\n".join(resume_lines)))

        if ctx.interview:
            iv = ctx.interview
            parts.append(NamedText(name="interview", text="\n".join([
                f"Round {iv.round} ({iv.type}), rating {iv.rating if iv.rating is not None else 'N/A'}/5, "
                f"recommendation: {iv.recommendation or 'none'}",
                f"Key findings: {'; '.join(iv.key_findings) or 'none'}",
                f"Concern areas: {'; '.join(iv.concern_areas) or 'none'}",
            ])))
            for name, text in (("feedback", iv.feedback), ("notes", iv.interviewer_notes),
                               ("transcript", iv.transcription)):
                if text:
                    parts.append(NamedText(name=name, text=sanitize_for_prompt(text), optional=True))

        if ctx.interviews:
            parts.append(self.budgeter.history_part(ctx.interviews))

        if ctx.job:
            parts.append(NamedText(name="job_description", optional=True, text="\n".join([
                f"Title: {ctx.job.title}",
                f"Requirements: {', '.join(ctx.job.requirements)}",
                f"Description: {sanitize_for_prompt(ctx.job.description)}",
            ])))
        return [p for p in parts if p.text.strip()]

    def _assemble_profile_data(self, payload: ProfileAnalysisPayload, aggregated: AggregatedEvidence,
                               summary: EvidenceSummary) -> dict:
        data = payload.profile_data.model_dump(mode="json")
        for skill in data.get("technical_skills", []):
            name = skill["skill"].lower()
            matching = [
                e for e in aggregated.deduped
                if name in e.original_text.lower() or (e.claim and name in e.claim.lower())
            ]
            if not matching:
                continue
            claim = self.aggregator.build_claim(skill_claim(skill["skill"]), ClaimType.TECHNICAL_SKILL, matching)
            chain = self.aggregator.build_chain(claim, aggregated.contradictions)
            skill["evidence_ids"] = [e.id for e in matching]
            skill["evidence_confidence"] = claim.confidence_score
            skill["evidence_summary"] = claim.evidence_summary
            skill["argument"] = chain.argument_structure.model_dump()

        data["evidence"] = [e.model_dump(mode="json") for e in aggregated.deduped]
        data["evidence_summary"] = summary.model_dump()
        data["contradictions"] = [
            {
                "key": c.key,
                "evidence_ids": c.evidence_ids,
                "preferred_evidence_id": c.preferred_evidence_id,
                "note": c.note,
            }
            for c in aggregated.contradictions
        ]
        return data

    def _persist(self, ctx: BuildContext, payload: ProfileAnalysisPayload, profile_data: dict) -> CandidateProfile:
        candidate_id = ctx.candidate.id
        prior_sources = ctx.prior.data_sources if ctx.prior else []
        data_sources = list(dict.fromkeys([*prior_sources, stage_label(ctx.stage)]))

        # versions are assigned only after analysis succeeds
        for attempt in range(2):
            latest = self.profiles.latest_by_candidate(candidate_id)
            version = (latest.version if latest else 0) + 1
            profile = CandidateProfile(
                candidate_id=candidate_id,
                job_id=ctx.job_id,
                version=version,
                stage=ctx.stage,
                profile_data=profile_data,
                overall_score=payload.overall_score,
                strengths=payload.strengths,
                concerns=payload.concerns,
                gaps=payload.gaps,
                data_sources=data_sources,
                ai_summary=payload.ai_summary,
            )
            try:
                created = self.profiles.create(profile)
            except VersionConflictError:
                if attempt:
                    raise
                logger.warning(f"[{candidate_id}] version {version} taken concurrently; recomputing")
                continue
            logger.info(f"[{candidate_id}:{ctx.trigger.key}] created profile v{created.version} ({created.stage})")
            return created
