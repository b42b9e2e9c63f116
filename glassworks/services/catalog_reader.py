"""Read-only access to designs and size options."""

import logging

from glassworks.core.supabase import get_supabase_client
from glassworks.models.catalog import Design, SizeOption

logger = logging.getLogger(__name__)


class CatalogReader:
    """Catalog lookups for checkout.

    Reads the database every time. Prices must be authoritative at
    checkout, so nothing here is cached.
    """

    def __init__(self) -> None:
        """Initialize catalog reader with Supabase client."""
        self.client = get_supabase_client()

    async def get_size_option(self, size_option_id: int) -> SizeOption | None:
        """Get a size option by ID.

        Args:
            size_option_id: The size option's ID.

        Returns:
            SizeOption | None: The row if found, None otherwise.
        """
        response = (
            self.client.table("size_options")
            .select("*")
            .eq("id", size_option_id)
            .maybe_single()
            .execute()
        )
        return response.data if response else None

    async def get_design(self, design_id: int) -> Design | None:
        """Get a design by ID.

        Args:
            design_id: The design's ID.

        Returns:
            Design | None: The row if found, None otherwise.
        """
        response = (
            self.client.table("designs")
            .select("*")
            .eq("id", design_id)
            .maybe_single()
            .execute()
        )
        return response.data if response else None

    async def list_size_options(self) -> list[SizeOption]:
        """List all size options, cheapest first."""
        response = self.client.table("size_options").select("*").order("price").execute()
        return response.data or []
