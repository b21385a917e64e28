"""Cache management endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter
from fastapi.responses import ORJSONResponse

from captiongate.api.deps import Admin, AdminKey, admin_response
from captiongate.core.cache.backends import SearchCriteria
from captiongate.schemas.cache import CacheCleanRequest, CacheClearRequest, CacheSearchRequest

router = APIRouter()


@router.get("/stats", summary="Cache statistics and hit rate")
async def cache_stats(admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.cache_stats())


@router.get("/hit-rate", summary="Cache hit rate (percent)")
async def cache_hit_rate(admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.cache_hit_rate())


@router.post("/search", summary="Search cache entries")
async def search_cache(
    body: CacheSearchRequest, admin_key: AdminKey, service: Admin
) -> ORJSONResponse:
    criteria = SearchCriteria(
        owner_id=body.owner_id,
        mood=body.mood,
        prompt_substring=body.prompt_contains,
        created_from=body.created_from,
        created_to=body.created_to,
        min_usage=body.min_usage,
    )
    return admin_response(await service.search_cache(criteria))


@router.post("/clean", summary="Delete old, rarely used entries")
async def clean_cache(
    body: CacheCleanRequest, admin_key: AdminKey, service: Admin
) -> ORJSONResponse:
    return admin_response(await service.clean_cache(body.days))


@router.post("/purge-expired", summary="Delete entries past their TTL")
async def purge_expired(admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.purge_expired_cache())


@router.post("/clear", summary="Delete every cache entry")
async def clear_cache(
    body: CacheClearRequest, admin_key: AdminKey, service: Admin
) -> ORJSONResponse:
    return admin_response(await service.clear_cache(body.confirm))


@router.get("/{entry_id}", summary="Get a cache entry")
async def get_entry(entry_id: uuid.UUID, admin_key: AdminKey, service: Admin) -> ORJSONResponse:
    return admin_response(await service.get_cache_entry(entry_id))


@router.delete("/{entry_id}", summary="Delete a cache entry")
async def delete_entry(
    entry_id: uuid.UUID, admin_key: AdminKey, service: Admin
) -> ORJSONResponse:
    return admin_response(await service.delete_cache_entry(entry_id))
