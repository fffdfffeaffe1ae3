"""
Card lookup endpoints backed by the data source manager.
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from collector_nexus.api.deps import get_manager
from collector_nexus.schemas.sources import FetchPageResponse, PriceResponse, SourceHitResponse
from collector_nexus.services.sources.base import FetchOptions, record_to_dict
from collector_nexus.services.sources.manager import DataSourceManager

router = APIRouter(prefix="/cards", tags=["Cards"])


@router.get("/search", response_model=FetchPageResponse)
async def search_cards(
    q: str = Query(..., min_length=1, description="Search query"),
    page: int = Query(1, ge=1, description="Page number (1-based)"),
    page_size: int = Query(20, ge=1, le=175, alias="pageSize", description="Results per page"),
    source: str | None = Query(None, description="Source id; defaults to the default source"),
    manager: DataSourceManager = Depends(get_manager),
):
    """
    Search cards on one source.

    - **q**: Provider search query (Scryfall syntax for Scryfall)
    - **source**: Source id, e.g. 'scryfall', 'mtgjson', 'cardtrader'
    """
    options = FetchOptions.for_page(q, page, page_size)
    result = await manager.search_cards(q, options, source_id=source)
    return result.to_dict()


@router.get("/{card_id}", response_model=SourceHitResponse)
async def get_card(
    card_id: str,
    source: str | None = Query(None, description="Source id; omitted probes every source in order"),
    manager: DataSourceManager = Depends(get_manager),
):
    """
    Get one card by its provider id.

    Without **source**, sources are asked one at a time in registration
    order and the first hit is returned.
    """
    hit = await manager.fetch_by_id(card_id, source_id=source)
    if hit is None:
        raise HTTPException(status_code=404, detail="Card not found")
    return {"source": hit.source, "data": record_to_dict(hit.data)}


@router.get("/{card_id}/price", response_model=PriceResponse)
async def get_card_price(
    card_id: str,
    source: str | None = Query(None, description="Source id; defaults to the default source"),
    manager: DataSourceManager = Depends(get_manager),
):
    """Current price of a card on one source."""
    price = await manager.get_card_price(card_id, source_id=source)
    if price is None:
        raise HTTPException(status_code=404, detail="Price not found")
    return price
