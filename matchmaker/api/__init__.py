from fastapi import APIRouter
from matchmaker.api import matching

api_router = APIRouter()
api_router.include_router(matching.router, prefix="/matching", tags=["matching"])
