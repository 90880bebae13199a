import asyncio

import pytest

from domain.errors import AnalysisError, BudgetExceededError, InputValidationError, WaitTimeoutError
from domain.schemas import EvidenceSource, ProfileTrigger
from domain.services.prompt_budgeter import PromptBudgeter
from domain.services.update_coordinator import UpdateCoordinator
from infra.repositories.profiles_repository import ProfilesRepository

from conftest import FakeCompletionClient, StallingClient

RESUME = ProfileTrigger(kind="resume")
FINAL = ProfileTrigger(kind="final_evaluation")


def interview(iid):
    return ProfileTrigger(kind="interview", interview_id=iid)


def add_round(records_repo, candidate_id, round, **fields):
    defaults = dict(type="technical", status="completed", rating=4, recommendation="next-round",
                    feedback=f"Round {round} went well. Solid Python answers.",
                    key_findings=[f"Round {round} strength"])
    defaults.update(fields)
    return records_repo.add_interview(candidate_id, round, interview_id=f"iv_{round}", **defaults)


def test_resume_build_creates_version_one_with_evidence(make_service, candidate_id):
    client = FakeCompletionClient()
    service = make_service(client)

    profile = asyncio.run(service.request_profile_update(candidate_id, RESUME))

    assert profile.version == 1
    assert profile.stage == "resume"
    assert profile.data_sources == ["Resume"]
    assert profile.id.startswith("profile_")
    data = profile.profile_data
    assert data["evidence"]
    assert data["evidence_summary"]["total_evidence"] == len(data["evidence"])
    python = next(s for s in data["technical_skills"] if s["skill"] == "Python")
    assert python["evidence_ids"]
    assert 0 < python["evidence_confidence"] <= 100
    rust = next(s for s in data["technical_skills"] if s["skill"] == "Rust")
    assert "evidence_ids" not in rust

    system, user = client.messages[0]
    assert system["role"] == "system" and "Build a complete" in system["content"]
    assert "## Resume" in user["content"]
    assert "Ada Lovelace" in user["content"]


def test_versions_are_contiguous_across_the_lifecycle(make_service, candidate_id, records_repo, profiles_repo):
    add_round(records_repo, candidate_id, 1)
    add_round(records_repo, candidate_id, 2)
    service = make_service()

    async def lifecycle():
        out = [await service.request_profile_update(candidate_id, RESUME)]
        out.append(await service.request_profile_update(candidate_id, interview("iv_1")))
        out.append(await service.request_profile_update(candidate_id, interview("iv_2")))
        out.append(await service.request_profile_update(candidate_id, FINAL))
        return out

    profiles = asyncio.run(lifecycle())

    assert [p.version for p in profiles] == [1, 2, 3, 4]
    assert [p.stage for p in profiles] == ["resume", "after_interview_1", "after_interview_2", "final_evaluation"]
    assert profiles[-1].data_sources == ["Resume", "Interview round 1", "Interview round 2", "Final evaluation"]
    assert [p.version for p in service.get_profile_evolution(candidate_id)] == [1, 2, 3, 4]
    assert service.get_profile_version(candidate_id, 2).stage == "after_interview_1"
    assert service.get_latest_profile(candidate_id).version == 4


def test_interview_build_carries_prior_evidence_forward(make_service, candidate_id, records_repo):
    add_round(records_repo, candidate_id, 1, interviewer_notes="Calm under pressure",
              transcription="Q: tell me about Python. A: ...")
    client = FakeCompletionClient()
    service = make_service(client)

    async def run():
        v1 = await service.request_profile_update(candidate_id, RESUME)
        v2 = await service.request_profile_update(candidate_id, interview("iv_1"))
        return v1, v2

    v1, v2 = asyncio.run(run())

    v1_ids = {e["id"] for e in v1.profile_data["evidence"]}
    v2_ids = {e["id"] for e in v2.profile_data["evidence"]}
    assert v1_ids < v2_ids
    assert any(e["source"] == EvidenceSource.INTERVIEW_FEEDBACK.value for e in v2.profile_data["evidence"])

    system, user = client.messages[1]
    assert "Update the candidate's existing profile" in system["content"]
    for title in ("## Current profile", "## Latest interview", "## Interviewer feedback",
                  "## Interviewer notes", "## Interview transcript"):
        assert title in user["content"]
    assert "## Interview history" not in user["content"]


def test_concurrent_submissions_for_same_interview_create_single_version(
        make_service, candidate_id, records_repo, seed):
    seed(candidate_id, 1, "resume")
    seed(candidate_id, 2, "after_interview_1", ["Resume", "Interview round 1"])
    add_round(records_repo, candidate_id, 2)
    client = FakeCompletionClient(delay=0.05)
    service = make_service(client)

    async def scenario():
        first = asyncio.create_task(service.request_profile_update(candidate_id, interview("iv_2")))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(service.request_profile_update(candidate_id, interview("iv_2")))
        return await asyncio.gather(first, second)

    a, b = asyncio.run(scenario())

    assert client.calls == 1
    assert a is b
    assert a.version == 3
    assert a.stage == "after_interview_2"
    assert [p.version for p in service.get_profile_evolution(candidate_id)] == [1, 2, 3]


def test_concurrent_different_interviews_never_share_a_version(
        make_service, candidate_id, records_repo, seed):
    seed(candidate_id, 1, "resume")
    add_round(records_repo, candidate_id, 1)
    add_round(records_repo, candidate_id, 2)
    service = make_service(FakeCompletionClient(delay=0.02))

    async def scenario():
        return await asyncio.gather(
            service.request_profile_update(candidate_id, interview("iv_1")),
            service.request_profile_update(candidate_id, interview("iv_2")),
        )

    results = asyncio.run(scenario())
    assert sorted(p.version for p in results) == [2, 3]
    assert [p.version for p in service.get_profile_evolution(candidate_id)] == [1, 2, 3]


def test_repeat_request_within_window_is_served_from_cache(make_service, candidate_id):
    client = FakeCompletionClient()
    service = make_service(client)

    async def twice():
        first = await service.request_profile_update(candidate_id, RESUME)
        second = await service.request_profile_update(candidate_id, RESUME)
        return first, second

    first, second = asyncio.run(twice())
    assert first is second
    assert client.calls == 1
    assert len(service.get_profile_evolution(candidate_id)) == 1


class RacingProfilesRepository(ProfilesRepository):
    """Lets another writer take the next version right before the first create."""

    raced = False

    def create(self, profile):
        if not self.raced:
            self.raced = True
            super().create(profile.model_copy(update={"stage": "written_elsewhere"}))
        return super().create(profile)


def test_version_conflict_recomputes_and_retries_once(make_service, candidate_id, session_factory):
    service = make_service()
    racing = RacingProfilesRepository(session_factory)
    service.builder.profiles = racing

    profile = asyncio.run(service.request_profile_update(candidate_id, RESUME))

    assert profile.version == 2
    assert [p.stage for p in racing.list_by_candidate(candidate_id)] == ["written_elsewhere", "resume"]


def test_unknown_candidate_is_not_found(make_service):
    with pytest.raises(InputValidationError) as info:
        asyncio.run(make_service().request_profile_update("cand_missing", RESUME))
    assert info.value.not_found
    assert not info.value.retryable


def test_interview_needs_an_existing_profile(make_service, candidate_id, records_repo):
    add_round(records_repo, candidate_id, 1)
    with pytest.raises(InputValidationError) as info:
        asyncio.run(make_service().request_profile_update(candidate_id, interview("iv_1")))
    assert info.value.not_found


def test_interview_of_another_candidate_is_rejected(make_service, candidate_id, records_repo, seed):
    other = records_repo.add_candidate("Grace Hopper", resume_text="COBOL", candidate_id="cand_grace")
    add_round(records_repo, other, 1)
    seed(candidate_id, 1, "resume")
    with pytest.raises(InputValidationError) as info:
        asyncio.run(make_service().request_profile_update(candidate_id, interview("iv_1")))
    assert not info.value.not_found
    assert "does not belong" in info.value.message


def test_interview_trigger_requires_interview_id(make_service, candidate_id):
    with pytest.raises(InputValidationError):
        asyncio.run(make_service().request_profile_update(candidate_id, ProfileTrigger(kind="interview")))


def test_resume_without_text_or_skills_is_rejected(make_service, records_repo):
    cid = records_repo.add_candidate("No Resume", candidate_id="cand_empty")
    with pytest.raises(InputValidationError):
        asyncio.run(make_service().request_profile_update(cid, RESUME))


def test_failed_analysis_leaves_no_version_behind(make_service, candidate_id):
    service = make_service(FakeCompletionClient(["not json at all"]))
    with pytest.raises(AnalysisError) as info:
        asyncio.run(service.request_profile_update(candidate_id, RESUME))
    assert info.value.kind == AnalysisError.SCHEMA
    assert service.get_profile_evolution(candidate_id) == []


def test_oversized_required_input_fails_before_the_analysis_call(make_service, candidate_id):
    client = FakeCompletionClient()
    service = make_service(client, budgeter=PromptBudgeter(ceiling=50))
    with pytest.raises(BudgetExceededError):
        asyncio.run(service.request_profile_update(candidate_id, RESUME))
    assert client.calls == 0


def test_history_lists_only_rounds_before_the_triggering_one(make_service, candidate_id, records_repo, seed):
    seed(candidate_id, 1, "resume")
    add_round(records_repo, candidate_id, 1)
    add_round(records_repo, candidate_id, 2)
    add_round(records_repo, candidate_id, 3, status="scheduled", rating=None, recommendation=None,
              feedback=None, key_findings=[])
    client = FakeCompletionClient()

    asyncio.run(make_service(client).request_profile_update(candidate_id, interview("iv_2")))

    _, user = client.messages[0]
    assert "Round 1: technical, rating 4/5, next-round" in user["content"]
    assert "Round 2:" not in user["content"]
    assert "Round 3" not in user["content"]


def test_final_evaluation_history_skips_rounds_not_yet_held(make_service, candidate_id, records_repo, seed):
    seed(candidate_id, 1, "resume")
    seed(candidate_id, 2, "after_interview_1", ["Resume", "Interview round 1"])
    add_round(records_repo, candidate_id, 1)
    add_round(records_repo, candidate_id, 2, status="scheduled", rating=None, recommendation=None)
    client = FakeCompletionClient()

    profile = asyncio.run(make_service(client).request_profile_update(candidate_id, FINAL))

    assert profile.version == 3
    _, user = client.messages[0]
    assert "Round 1: technical" in user["content"]
    assert "Round 2" not in user["content"]


def test_slow_owner_within_its_retry_budget_keeps_the_lock(make_service, candidate_id):
    # two attempts time out, the third succeeds; the sweep runs throughout
    client = StallingClient(stalls=2)
    coordinator = UpdateCoordinator(idempotency_window=60, join_timeout=1.0, max_lock_age=0.06,
                                    sweep_interval=0.01, failure_cooldown=0.05)
    service = make_service(client, coordinator=coordinator, max_retries=2, timeout=0.015, backoff=0.001)

    async def scenario():
        async with coordinator:
            first = asyncio.create_task(service.request_profile_update(candidate_id, RESUME))
            await asyncio.sleep(0.025)
            second = asyncio.create_task(service.request_profile_update(candidate_id, RESUME))
            return await asyncio.gather(first, second)

    a, b = asyncio.run(scenario())

    assert a is b
    assert client.calls == 3
    assert [p.version for p in service.get_profile_evolution(candidate_id)] == [1]


def test_service_rejects_analysis_budget_longer_than_lock_age(make_service):
    coordinator = UpdateCoordinator(max_lock_age=2.0)
    with pytest.raises(ValueError, match="lock age"):
        make_service(coordinator=coordinator, max_retries=2, timeout=1.0)


def short_join_coordinator():
    return UpdateCoordinator(idempotency_window=60, join_timeout=0.05, max_lock_age=5.0,
                             sweep_interval=0.05, failure_cooldown=0.05)


def test_joiner_retrying_as_owner_recovers_from_a_hung_owner(make_service, candidate_id):
    client = StallingClient(stalls=1)
    service = make_service(client, coordinator=short_join_coordinator())

    async def scenario():
        owner = asyncio.create_task(service.request_profile_update(candidate_id, RESUME))
        await asyncio.sleep(0.01)
        profile = await service.request_profile_update(candidate_id, RESUME, retry_as_owner=True)
        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner
        return profile

    profile = asyncio.run(scenario())

    assert profile.version == 1
    assert profile.stage == "resume"
    assert client.calls == 2
    assert [p.version for p in service.get_profile_evolution(candidate_id)] == [1]


def test_joiner_without_retry_gives_up_with_wait_timeout(make_service, candidate_id):
    client = StallingClient(stalls=1)
    service = make_service(client, coordinator=short_join_coordinator())

    async def scenario():
        owner = asyncio.create_task(service.request_profile_update(candidate_id, RESUME))
        await asyncio.sleep(0.01)
        try:
            await service.request_profile_update(candidate_id, RESUME)
        finally:
            owner.cancel()
            await asyncio.gather(owner, return_exceptions=True)

    with pytest.raises(WaitTimeoutError) as info:
        asyncio.run(scenario())
    assert info.value.retryable
    assert client.calls == 1
    assert service.get_profile_evolution(candidate_id) == []
