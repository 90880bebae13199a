from fastapi import APIRouter

from api.endpoints.profiles import router as profiles_router

api_router = APIRouter()
api_router.include_router(profiles_router, tags=["profiles"])
