from fastapi import Request

from domain.services.profile_service import ProfileService


def get_profile_service(request: Request) -> ProfileService:
    return request.app.state.profile_service
