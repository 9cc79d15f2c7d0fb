"""
Liveness endpoint.
"""

from fastapi import APIRouter

router = APIRouter(tags=["info"])


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}
