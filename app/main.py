from fastapi import FastAPI

from app.error_handlers import attach_error_handlers
from app.logging import configure_logging
from app.settings import settings
from api.router import api_router
from domain.services.analysis_invoker import AnalysisInvoker
from domain.services.profile_builder import ProfileBuilder
from domain.services.profile_service import ProfileService
from domain.services.update_coordinator import UpdateCoordinator
from domain.services.usage_tracker import UsageTracker
from infra.db.session import init_db
from infra.llm.client import CompletionClient
from infra.repositories.profiles_repository import ProfilesRepository
from infra.repositories.records_repository import RecordsRepository

configure_logging()
app = FastAPI(title=settings.APP_NAME)


def build_profile_service() -> ProfileService:
    profiles = ProfilesRepository()
    invoker = AnalysisInvoker(CompletionClient(), UsageTracker())
    builder = ProfileBuilder(profiles, RecordsRepository(), invoker)
    return ProfileService(builder, UpdateCoordinator(), profiles)


@app.on_event("startup")
async def _on_startup():
    init_db()
    app.state.profile_service = build_profile_service()
    app.state.profile_service.coordinator.start()


@app.on_event("shutdown")
async def _on_shutdown():
    service = getattr(app.state, "profile_service", None)
    if service is not None:
        await service.coordinator.stop()


attach_error_handlers(app)
app.include_router(api_router, prefix=settings.API_PREFIX)
