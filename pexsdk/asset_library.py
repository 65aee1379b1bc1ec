"""
Asset metadata lookups: ISRC, artists, UPCs and licensors per territory.
"""

import logging
from urllib.parse import quote

from .decoder import decode_asset
from .errors import InvalidInputError
from .schemas import AssetDetail

logger = logging.getLogger(__name__)


class AssetLibrary:
    """Looks up asset metadata (ISRC, artists, UPCs, licensors) by asset ID."""

    def __init__(self, client):
        self._client = client

    def get_asset(self, asset_id: str) -> AssetDetail:
        """
        Fetch the metadata of one asset.

        Args:
            asset_id: Asset ID as found in search matches

        Returns:
            AssetDetail with licensors keyed by territory code

        Raises:
            NotFoundError: unknown asset
        """
        asset_id = str(asset_id).strip()
        if not asset_id:
            raise InvalidInputError("asset_id must not be empty")
        body = self._client._call("GET", f"/v1/assets/{quote(asset_id, safe='')}")
        asset = decode_asset(body)
        logger.debug(f"Fetched asset {asset.id}")
        return asset
