"""API routes for price quotes and the tier catalog."""
from __future__ import annotations

from fastapi import APIRouter

from ..pricing import SERIES_CATALOG, price, validate_selection
from ..schemas.pricing import CatalogResponse, QuoteRequest, QuoteResponse, SeriesDefinitionView

router = APIRouter(prefix="/api/pricing", tags=["pricing"])


@router.post("/quote", response_model=QuoteResponse)
def quote(payload: QuoteRequest) -> QuoteResponse:
    """Price a selection and report anything that would block ordering it."""
    selection = payload.to_selection()
    return QuoteResponse.from_quote(price(selection), validate_selection(selection))


@router.get("/catalog", response_model=CatalogResponse)
def catalog() -> CatalogResponse:
    return CatalogResponse(
        series=[SeriesDefinitionView.from_definition(definition) for definition in SERIES_CATALOG.values()]
    )
