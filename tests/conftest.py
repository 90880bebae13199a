import asyncio
import json

import pytest

from domain.schemas import CandidateProfile, ResumeAnalysis
from domain.services.analysis_invoker import AnalysisInvoker
from domain.services.profile_builder import ProfileBuilder
from domain.services.profile_service import ProfileService
from domain.services.prompt_budgeter import PromptBudgeter
from domain.services.update_coordinator import UpdateCoordinator
from domain.services.usage_tracker import UsageTracker
from infra.db.session import make_session_factory
from infra.llm.client import Completion
from infra.repositories.profiles_repository import ProfilesRepository
from infra.repositories.records_repository import RecordsRepository
from infra.repositories.usage_repository import UsageRepository

RESUME_TEXT = """Ada Lovelace
EXPERIENCE
Senior Engineer at Analytical Engines Ltd
Built Python data services for 6 years
Led a team of 5 engineers on the payments platform
SKILLS
Python, SQL and distributed systems
"""

RESUME_ANALYSIS = ResumeAnalysis(
    summary="Backend engineer focused on data services",
    skills=["Python", "SQL"],
    experience=6,
    education="BSc Mathematics",
    strengths=["Strong payments platform delivery"],
    weaknesses=["Limited frontend exposure"],
)


def analysis_json(**overrides) -> str:
    payload = {
        "profile_data": {
            "technical_skills": [
                {"skill": "Python", "proficiency": "advanced", "evidence_source": "6 years of data services"},
                {"skill": "Rust", "proficiency": "beginner", "evidence_source": "mentioned in passing"},
            ],
            "soft_skills": [{"skill": "Leadership", "examples": ["Led a team of 5 engineers"]}],
            "experience": {"total_years": 6, "relevant_years": 5, "positions": []},
        },
        "overall_score": 78,
        "data_sources": ["Resume"],
        "gaps": ["No frontend work"],
        "strengths": ["Python depth"],
        "concerns": [],
        "ai_summary": "Experienced backend engineer with solid Python and data platform delivery record.",
    }
    payload.update(overrides)
    return json.dumps(payload)


class FakeCompletionClient:
    """Scripted stand-in for the completion client.

    Each scripted item is either a string returned as content or an exception
    to raise. Once the script runs out every call returns a valid analysis.
    """

    def __init__(self, script=None, delay: float = 0.0):
        self.script = list(script or [])
        self.delay = delay
        self.calls = 0
        self.messages = []

    async def complete(self, messages, model, response_format=None):
        self.calls += 1
        self.messages.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.script.pop(0) if self.script else analysis_json()
        if isinstance(item, BaseException):
            raise item
        return Completion(content=item, usage={"prompt_tokens": 1200, "completion_tokens": 300})


class StallingClient(FakeCompletionClient):
    """Hangs on the first `stalls` calls, then answers like FakeCompletionClient."""

    def __init__(self, stalls: int, script=None):
        super().__init__(script)
        self.stalls = stalls

    async def complete(self, messages, model, response_format=None):
        if self.calls < self.stalls:
            self.calls += 1
            await asyncio.sleep(3600)
        return await super().complete(messages, model, response_format)


class HangingClient:
    def __init__(self):
        self.calls = 0

    async def complete(self, messages, model, response_format=None):
        self.calls += 1
        await asyncio.sleep(3600)


@pytest.fixture
def session_factory():
    return make_session_factory()


@pytest.fixture
def profiles_repo(session_factory):
    return ProfilesRepository(session_factory)


@pytest.fixture
def records_repo(session_factory):
    return RecordsRepository(session_factory)


@pytest.fixture
def usage_repo(session_factory):
    return UsageRepository(session_factory)


@pytest.fixture
def candidate_id(records_repo):
    return records_repo.add_candidate(
        "Ada Lovelace", resume_text=RESUME_TEXT, resume_analysis=RESUME_ANALYSIS,
        position="Backend Engineer", location="London", candidate_id="cand_ada",
    )


@pytest.fixture
def make_service(profiles_repo, records_repo, usage_repo):
    def _make(client=None, *, coordinator=None, budgeter=None, max_retries=0,
              timeout=1.0, backoff=0.0):
        client = client or FakeCompletionClient()
        invoker = AnalysisInvoker(
            client, UsageTracker(usage_repo), timeout_seconds=timeout,
            max_retries=max_retries, backoff_seconds=backoff,
        )
        builder = ProfileBuilder(profiles_repo, records_repo, invoker,
                                 budgeter=budgeter or PromptBudgeter(ceiling=6000), model="gpt-4o")
        coordinator = coordinator or UpdateCoordinator(
            idempotency_window=60, join_timeout=1.0, max_lock_age=5.0,
            sweep_interval=0.05, failure_cooldown=0.05,
        )
        return ProfileService(builder, coordinator, profiles_repo)
    return _make


def seed_profile(profiles_repo, candidate_id: str, version: int, stage: str, data_sources=None):
    return profiles_repo.create(CandidateProfile(
        candidate_id=candidate_id,
        version=version,
        stage=stage,
        profile_data={"technical_skills": [{"skill": "Python", "proficiency": "advanced"}]},
        overall_score=70,
        strengths=["Python depth"],
        data_sources=data_sources or ["Resume"],
        ai_summary="Seeded profile",
    ))


@pytest.fixture
def seed(profiles_repo):
    def _seed(candidate_id: str, version: int, stage: str, data_sources=None):
        return seed_profile(profiles_repo, candidate_id, version, stage, data_sources)
    return _seed
