from __future__ import annotations

from fastapi import APIRouter


def build_core_router(*, state, started_at, build_health_payload):
    router = APIRouter()

    @router.get("/health")
    async def health():
        return build_health_payload(state=state, started_at=started_at)

    return router
