"""
FastAPI route: public-data cache and providers.

    GET  /api/v1/public-data/weather?force_refresh=false
    GET  /api/v1/public-data/air-quality?force_refresh=false
    GET  /api/v1/public-data/disasters?force_refresh=false
    POST /api/v1/public-data/refresh        — force-refresh all three
    GET  /api/v1/public-data/connections    — provider reachability
    GET  /api/v1/public-data/cache/stats
    POST /api/v1/public-data/cache/cleanup

A source that cannot be read (fresh fetch and stale cache both failed)
answers 503 DATA_UNAVAILABLE.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from welfare_notify.services import Services, get_services

router = APIRouter(prefix="/api/v1/public-data", tags=["public-data"])


@router.get("/weather", summary="Current weather for the configured region")
async def get_weather(
    force_refresh: bool = Query(False, description="Bypass the cache"),
    services: Services = Depends(get_services),
):
    weather = await services.data_service.get_weather(force_refresh=force_refresh)
    return weather.to_dict()


@router.get("/air-quality", summary="Real-time air quality per station")
async def get_air_quality(
    force_refresh: bool = Query(False, description="Bypass the cache"),
    services: Services = Depends(get_services),
):
    air = await services.data_service.get_air_quality(force_refresh=force_refresh)
    return air.to_dict()


@router.get("/disasters", summary="Disaster messages from the last 24 hours")
async def get_disasters(
    force_refresh: bool = Query(False, description="Bypass the cache"),
    services: Services = Depends(get_services),
):
    messages = await services.data_service.get_disasters(force_refresh=force_refresh)
    alerts = services.monitor.classifier.classify_all(messages)
    return {
        "count": len(messages),
        "relevant": len(alerts),
        "emergencies": sum(1 for a in alerts if a.is_emergency),
        "alerts": [a.to_dict() for a in alerts],
    }


@router.post("/refresh", summary="Force-refresh every data type")
async def refresh_all(services: Services = Depends(get_services)):
    summary = await services.data_service.update_all()
    return summary.to_dict()


@router.get("/connections", summary="Check provider reachability")
async def check_connections(services: Services = Depends(get_services)):
    results = await services.data_service.check_connections()
    return {"all_connected": all(results.values()), "providers": results}


@router.get("/cache/stats", summary="Cache statistics")
async def cache_stats(services: Services = Depends(get_services)):
    return await services.data_service.cache_statistics()


@router.post("/cache/cleanup", summary="Remove expired cache entries")
async def cache_cleanup(services: Services = Depends(get_services)):
    removed = await services.data_service.cleanup_expired_cache()
    return {"removed": removed}
