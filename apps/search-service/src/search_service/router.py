"""Search HTTP API over the read model."""

import math
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from basecore.db import get_search_db
from search_core.persistence.repo import SearchRepository
from search_service.schemas import SearchItemDto, SearchResultsDto

search_router = APIRouter(prefix="/search", tags=["search"])


def get_repository(db: Session = Depends(get_search_db)) -> SearchRepository:
    return SearchRepository(db)


@search_router.get("", response_model=SearchResultsDto)
def search_items(
    searchTerm: str | None = Query(None),
    seller: str | None = Query(None),
    winner: str | None = Query(None),
    filterBy: Literal["finished", "endingSoon", "live"] | None = Query(None),
    orderBy: Literal["make", "new", "endingSoon"] | None = Query(None),
    pageNumber: int = Query(1, ge=1),
    pageSize: int = Query(4, ge=1, le=100),
    repo: SearchRepository = Depends(get_repository),
):
    items, total = repo.search(
        search_term=searchTerm,
        seller=seller,
        winner=winner,
        filter_by=filterBy,
        order_by=orderBy,
        page_number=pageNumber,
        page_size=pageSize,
    )
    return {
        "results": items,
        "pageCount": math.ceil(total / pageSize) if total else 0,
        "totalCount": total,
    }


@search_router.get("/{item_id}", response_model=SearchItemDto)
def get_search_item(
    item_id: UUID,
    repo: SearchRepository = Depends(get_repository),
):
    item = repo.get_item(item_id)
    if item is None or item.make is None:
        raise HTTPException(status_code=404, detail=f"Auction {item_id} not found")
    return item
