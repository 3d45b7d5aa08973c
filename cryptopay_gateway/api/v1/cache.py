"""Explorer cache introspection"""

from fastapi import APIRouter, Depends

from cryptopay_gateway.api.dependencies import get_explorer_client
from cryptopay_gateway.api.v1.schemas import CacheStatsResponse
from cryptopay_gateway.infrastructure.clients.explorer import ExplorerClient

router = APIRouter()


@router.get("/cache/stats", response_model=CacheStatsResponse)
def cache_stats(explorer: ExplorerClient = Depends(get_explorer_client)):
    entries, total_weight = explorer.cache_stats()
    return CacheStatsResponse(entries=entries, total_weight=total_weight)


@router.delete("/cache", status_code=204)
def clear_cache(explorer: ExplorerClient = Depends(get_explorer_client)):
    explorer.clear_cache()
