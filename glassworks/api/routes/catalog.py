"""Catalog API routes for the size options a design can be ordered in."""

from fastapi import APIRouter

from glassworks.api.middleware.error_handler import NotFoundError
from glassworks.schemas.order import SizeOptionDetail
from glassworks.services.catalog_reader import CatalogReader

router = APIRouter(prefix="/size-options", tags=["catalog"])


@router.get(
    "",
    response_model=list[SizeOptionDetail],
    summary="List size options",
    description="Returns every size option with its current price, cheapest first.",
)
async def list_size_options() -> list[SizeOptionDetail]:
    """List size options for the product page."""
    catalog = CatalogReader()
    size_options = await catalog.list_size_options()
    return [SizeOptionDetail(**size_option) for size_option in size_options]


@router.get(
    "/{size_option_id}",
    response_model=SizeOptionDetail,
    summary="Get size option by ID",
)
async def get_size_option(size_option_id: int) -> SizeOptionDetail:
    """Get a single size option.

    Raises:
        NotFoundError: 404 if the size option does not exist.
    """
    catalog = CatalogReader()
    size_option = await catalog.get_size_option(size_option_id)
    if not size_option:
        raise NotFoundError("Size option not found")
    return SizeOptionDetail(**size_option)
