import json
import re
from typing import Dict, List, Literal, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from app.settings import settings
from domain.errors import PersistentError, TransientInfraError

T = TypeVar("T", bound=BaseModel)

Proficiency = Literal["beginner", "intermediate", "advanced", "expert"]


def _coerce_str_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    raise ValueError("must be a string or list of strings")


class TechnicalSkillPayload(BaseModel):
    skill: str = Field(..., min_length=1)
    proficiency: Proficiency
    evidence_source: str = Field(..., min_length=1)


class SoftSkillPayload(BaseModel):
    skill: str = Field(..., min_length=1)
    examples: List[str] = Field(default_factory=list)

    @field_validator("examples", mode="before")
    @classmethod
    def _ensure_list(cls, value):
        return _coerce_str_list(value)


class PositionPayload(BaseModel):
    title: str
    duration: str = ""
    key_achievements: List[str] = Field(default_factory=list)


class ExperiencePayload(BaseModel):
    total_years: float = Field(..., ge=0)
    relevant_years: float = Field(0, ge=0)
    positions: List[PositionPayload] = Field(default_factory=list)


class EducationPayload(BaseModel):
    level: str = ""
    field: str = ""
    institution: Optional[str] = None


class CulturalFitPayload(BaseModel):
    work_style: str = ""
    motivations: List[str] = Field(default_factory=list)
    preferences: List[str] = Field(default_factory=list)


class CareerTrajectoryPayload(BaseModel):
    progression: str = ""
    growth_areas: List[str] = Field(default_factory=list)
    stability_score: float = Field(50, ge=0, le=100)


class ValueAssessmentPayload(BaseModel):
    value_name: str
    score: float = Field(..., ge=0, le=100)
    evidence: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)


class CultureAssessmentPayload(BaseModel):
    overall_score: float = Field(..., ge=0, le=100)
    value_assessments: List[ValueAssessmentPayload] = Field(default_factory=list)
    trajectory: Optional[Literal["improving", "stable", "declining"]] = None
    confidence: Literal["low", "medium", "high"] = "medium"


class LeadershipDimensionPayload(BaseModel):
    dimension: str
    score: float = Field(..., ge=0, le=100)
    evidence: List[str] = Field(default_factory=list)


class LeadershipAssessmentPayload(BaseModel):
    overall_score: float = Field(..., ge=0, le=100)
    current_level: Literal[
        "individual_contributor", "emerging_leader", "developing_leader", "mature_leader"
    ] = "individual_contributor"
    dimension_scores: List[LeadershipDimensionPayload] = Field(default_factory=list)
    readiness_for_next_level: Optional[float] = Field(None, ge=0, le=100)


class OrganizationalFitPayload(BaseModel):
    culture_assessment: Optional[CultureAssessmentPayload] = None
    leadership_assessment: Optional[LeadershipAssessmentPayload] = None


class ProfileDataPayload(BaseModel):
    technical_skills: List[TechnicalSkillPayload]
    soft_skills: List[SoftSkillPayload] = Field(default_factory=list)
    experience: ExperiencePayload
    education: EducationPayload = Field(default_factory=EducationPayload)
    cultural_fit: CulturalFitPayload = Field(default_factory=CulturalFitPayload)
    career_trajectory: CareerTrajectoryPayload = Field(default_factory=CareerTrajectoryPayload)
    organizational_fit: Optional[OrganizationalFitPayload] = None


class ProfileAnalysisPayload(BaseModel):
    profile_data: ProfileDataPayload
    overall_score: float = Field(..., ge=0, le=100)
    data_sources: List[str] = Field(default_factory=list)
    gaps: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)
    ai_summary: str = Field(..., min_length=50)

    @field_validator("data_sources", "gaps", "strengths", "concerns", mode="before")
    @classmethod
    def _ensure_list(cls, value):
        return _coerce_str_list(value)


class Completion(BaseModel):
    content: str
    usage: Dict[str, int] = Field(default_factory=dict)


async def _post_once(url: str, headers: Dict[str, str], payload: Dict, *, timeout: float = 60) -> Dict:
    """Single HTTP attempt; retries belong to the analysis invoker."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, headers=headers, json=payload)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        if status >= 500 or status in {408, 429}:
            raise TransientInfraError(f"LLM provider returned {status}") from exc
        raise PersistentError(f"LLM provider rejected the request ({status})") from exc
    except httpx.TimeoutException as exc:
        raise TransientInfraError(f"LLM request timed out: {exc}") from exc
    except httpx.RequestError as exc:
        raise TransientInfraError(f"LLM connection failed: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise TransientInfraError("LLM provider returned a non-JSON body") from exc


class CompletionClient:
    """Chat-completion capability backed by OpenAI, falling back to OpenRouter."""

    def __init__(self, *, openai_api_key: Optional[str] = None,
                 openrouter_api_key: Optional[str] = None,
                 temperature: Optional[float] = None, timeout: float = 60):
        self.openai_api_key = openai_api_key if openai_api_key is not None else settings.OPENAI_API_KEY
        self.openrouter_api_key = (
            openrouter_api_key if openrouter_api_key is not None else settings.OPENROUTER_API_KEY
        )
        self.temperature = settings.ANALYSIS_TEMPERATURE if temperature is None else temperature
        self.timeout = timeout

    def _endpoint(self):
        if self.openai_api_key:
            return (
                "https://api.openai.com/v1/chat/completions",
                {"Authorization": f"Bearer {self.openai_api_key}"},
            )
        if self.openrouter_api_key:
            return (
                "https://openrouter.ai/api/v1/chat/completions",
                {
                    "Authorization": f"Bearer {self.openrouter_api_key}",
                    "HTTP-Referer": "http://localhost",
                    "X-Title": settings.APP_NAME,
                },
            )
        raise PersistentError("No LLM provider configured")

    async def complete(self, messages: List[Dict[str, str]], model: str,
                       response_format: Optional[Dict] = None) -> Completion:
        url, headers = self._endpoint()
        payload = {"model": model, "messages": messages, "temperature": self.temperature}
        if response_format:
            payload["response_format"] = response_format
        data = await _post_once(url, headers, payload, timeout=self.timeout)
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise TransientInfraError("LLM response had no choices") from exc
        usage = data.get("usage") or {}
        return Completion(
            content=content,
            usage={
                "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
                "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
            },
        )


_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def validate_llm_response(raw_text: str, model: Type[T]) -> T:
    match = _FENCED_JSON.search(raw_text or "")
    text = match.group(1) if match else (raw_text or "").strip()
    if not text:
        raise ValueError("LLM returned an empty response")
    try:
        return model.model_validate_json(text)
    except ValidationError as exc:
        # pydantic reports malformed JSON as a ValidationError too
        if any(err.get("type") == "json_invalid" for err in exc.errors()):
            raise ValueError("LLM response was not valid JSON") from exc
        raise ValueError(f"LLM response failed validation: {exc}") from exc
