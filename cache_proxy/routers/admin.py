from __future__ import annotations

from fastapi import APIRouter


def build_admin_router(*, api_cache_stats, api_cache_clear):
    router = APIRouter()
    router.add_api_route('/cache/stats', api_cache_stats, methods=['GET'])
    router.add_api_route('/cache/clear', api_cache_clear, methods=['POST'])
    return router
