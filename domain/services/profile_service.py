import logging
from typing import List, Optional

from domain.errors import InputValidationError, WaitTimeoutError
from domain.schemas import CandidateProfile, ProfileTrigger
from domain.services.profile_builder import ProfileBuilder
from domain.services.update_coordinator import UpdateCoordinator, update_key
from infra.repositories.profiles_repository import ProfilesRepository

logger = logging.getLogger(__name__)


class ProfileService:
    """Entry point for profile updates and evolution queries."""

    def __init__(self, builder: ProfileBuilder, coordinator: UpdateCoordinator,
                 profiles: ProfilesRepository):
        worst = builder.invoker.worst_case_seconds
        if worst >= coordinator.max_lock_age:
            raise ValueError(
                f"analysis may run {worst:g}s, longer than the {coordinator.max_lock_age:g}s "
                "lock age; the sweep would evict a live owner"
            )
        self.builder = builder
        self.coordinator = coordinator
        self.profiles = profiles

    async def request_profile_update(self, candidate_id: str, trigger: ProfileTrigger, *,
                                     retry_as_owner: bool = False) -> CandidateProfile:
        """Build a new profile version, or share the in-flight/cached result for the same trigger.

        With ``retry_as_owner`` a joiner whose wait timed out tries once more;
        the stale lock has been discarded by then so it becomes the owner.
        """
        if not candidate_id or not candidate_id.strip():
            raise InputValidationError("candidate_id must not be empty")
        if trigger.kind == "interview" and not trigger.interview_id:
            raise InputValidationError("interview_id is required for interview triggers")

        key = update_key(candidate_id, trigger.key)
        try:
            return await self.coordinator.run(key, lambda: self.builder.build(candidate_id, trigger))
        except WaitTimeoutError:
            if not retry_as_owner:
                raise
            logger.warning(f"[{key}] wait timed out; retrying as owner")
            return await self.coordinator.run(key, lambda: self.builder.build(candidate_id, trigger))

    def get_profile_evolution(self, candidate_id: str) -> List[CandidateProfile]:
        return self.profiles.list_by_candidate(candidate_id)

    def get_latest_profile(self, candidate_id: str) -> Optional[CandidateProfile]:
        return self.profiles.latest_by_candidate(candidate_id)

    def get_profile_version(self, candidate_id: str, version: int) -> Optional[CandidateProfile]:
        return self.profiles.get_by_version(candidate_id, version)
