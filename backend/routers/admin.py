from __future__ import annotations

from fastapi import APIRouter


def build_admin_router(*, api_status, api_cache_stats, api_cache_clear, api_reload_calibration):
    router = APIRouter()
    router.add_api_route('/api/status', api_status, methods=['GET'])
    router.add_api_route('/api/cache_stats', api_cache_stats, methods=['GET'])
    router.add_api_route('/api/cache/clear', api_cache_clear, methods=['POST'])
    router.add_api_route('/api/admin/reload_calibration', api_reload_calibration, methods=['POST'])
    return router
