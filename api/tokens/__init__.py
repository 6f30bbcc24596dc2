"""Token API endpoints."""

from fastapi import APIRouter, HTTPException, Query, status, Depends
from typing import Optional, List
from pydantic import BaseModel, Field
import logging

from tokens import TokenRegistry, TokenNotFoundError, InvalidAddressError
from tokens.search import TokenQuery, format_token

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/tokens",
    tags=["Tokens"]
)

_query: Optional[TokenQuery] = None
_stats_engine = None

def get_query() -> TokenQuery:
    """Shared query layer, created on first use."""
    global _query
    if _query is None:
        _query = TokenQuery(TokenRegistry())
    return _query

def get_stats_engine():
    """Shared stats engine, created on first use."""
    global _stats_engine
    if _stats_engine is None:
        from stats import StatsEngine
        _stats_engine = StatsEngine(get_query().registry)
    return _stats_engine

# Model definitions
class ResolveTokenRequest(BaseModel):
    """Request model for an on-demand token lookup."""
    address: str

class RefreshStatsRequest(BaseModel):
    """Request model for an on-demand stats refresh."""
    addresses: List[str] = Field(..., min_length=1, max_length=50)

@router.get("/")
async def list_tokens(
    filter: str = Query('new'),
    search: Optional[str] = Query(None),
    data_quality: str = Query('all'),
    limit: int = Query(50, ge=1, le=200),
    query: TokenQuery = Depends(get_query)
):
    """List tokens: new, trending, gainers, losers or pending."""
    try:
        tokens = await query.list_tokens(
            filter=filter, search=search, data_quality=data_quality, limit=limit
        )
        return {
            "tokens": tokens,
            "count": len(tokens),
            "filter": filter,
            "data_quality": data_quality
        }
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error listing tokens: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

@router.get("/stats")
async def global_stats(query: TokenQuery = Depends(get_query)):
    """Totals for the dashboard header."""
    try:
        return await query.global_stats()
    except Exception as e:
        logger.error(f"Error getting global stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

@router.post("/resolve")
async def resolve_token(request: ResolveTokenRequest, query: TokenQuery = Depends(get_query)):
    """Look up a token, indexing it from the coin provider if it is unknown."""
    try:
        row = await query.registry.resolve_token(request.address)
        return {"token": format_token(row)}
    except InvalidAddressError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except TokenNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Token {request.address} not found"
        )
    except Exception as e:
        logger.error(f"Error resolving {request.address}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

@router.post("/refresh")
async def refresh_stats(request: RefreshStatsRequest, engine=Depends(get_stats_engine)):
    """Refresh stats for up to 50 tokens now."""
    try:
        return await engine.refresh(request.addresses)
    except Exception as e:
        logger.error(f"Error refreshing stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

@router.get("/{address}")
async def get_token(address: str, query: TokenQuery = Depends(get_query)):
    """Get a token by address."""
    try:
        return await query.get_token(address)
    except InvalidAddressError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except TokenNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Token {address} not found"
        )
    except Exception as e:
        logger.error(f"Error getting token {address}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

@router.get("/{address}/history")
async def get_token_history(
    address: str,
    hours: int = Query(24, ge=1, le=24 * 30),
    query: TokenQuery = Depends(get_query)
):
    """Stats history for a token."""
    try:
        history = await query.get_history(address, hours)
        return {"address": address.lower(), "hours": hours, "history": history}
    except Exception as e:
        logger.error(f"Error getting history for {address}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

def configure(query: TokenQuery, stats_engine=None) -> None:
    """Share the service's registry and stats engine with the routes."""
    global _query, _stats_engine
    _query = query
    _stats_engine = stats_engine
