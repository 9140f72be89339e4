from __future__ import annotations

"""
GSI (Geospatial Information Authority of Japan) elevation tile adapter.

The remote source behind the elevation cache. Tiles are plain text:
256 lines of 256 comma-separated metre values, 'e' where there is no data.

Usage:
    gsi = GSIElevationProvider()
    tile = gsi.fetch_tile(15, 29105, 12903)   # np.ndarray (65536,) or None
"""

import logging
from typing import Optional, Sequence

import numpy as np
import requests

from elevation.tiles import parse_tile_text


log = logging.getLogger(__name__)


class GSIElevationProvider:
    def __init__(
        self,
        base_url: str = "https://cyberjapandata.gsi.go.jp",
        datasets: Sequence[str] = ("dem5a", "dem"),
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            base_url: tile server root
            datasets: tried in order; DEM5A (5 m mesh) first, then DEM10B
            timeout: per-request HTTP timeout (seconds)
            session: optional requests.Session for connection reuse
        """
        if not datasets:
            raise ValueError("At least one GSI dataset is required")
        self.base_url = base_url.rstrip("/")
        self.datasets = tuple(datasets)
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_url(self, dataset: str, z: int, x: int, y: int) -> str:
        return f"{self.base_url}/xyz/{dataset}/{int(z)}/{int(x)}/{int(y)}.txt"

    def fetch_tile_text(self, z: int, x: int, y: int) -> Optional[str]:
        """Raw tile body from the first dataset that answers 200, else None."""
        for dataset in self.datasets:
            url = self.build_url(dataset, z, x, y)
            try:
                r = self.session.get(url, timeout=self.timeout)
            except requests.RequestException as e:
                log.warning("GSI request failed: %s %s", url, e)
                continue
            if r.status_code == 200 and r.text:
                return r.text
            log.debug("GSI tile unavailable: %s %s", r.status_code, url)
        return None

    def fetch_tile(self, z: int, x: int, y: int) -> Optional[np.ndarray]:
        """
        Fetch and parse one tile.

        Returns:
            Read-only float64 array of 65,536 samples (row-major), or None on
            network failure, missing tile in every dataset, or a corrupt body.
        """
        text = self.fetch_tile_text(z, x, y)
        if text is None:
            return None
        tile = parse_tile_text(text)
        if tile is None:
            log.warning("Discarding corrupt GSI tile %s/%s/%s", z, x, y)
        return tile
