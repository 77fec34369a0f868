from fastapi import APIRouter
from .v1 import automations

api_router = APIRouter(prefix="/api", tags=["yusrai"])

api_router.include_router(automations.router, prefix="/v1", tags=["automations"])

@api_router.get("/")
def read_root():
    return {"message": "YusrAI automation API"}
