"""Access to the tiling configuration of WMTS layers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pyproj
from pyproj.exceptions import CRSError as ProjCRSError

from pygeowmts import utils
from pygeowmts.core import CapabilitiesCache
from pygeowmts.exceptions import InputValueError

if TYPE_CHECKING:
    from pyproj import CRS

    from pygeowmts.capabilities import (
        Layer,
        ResourceURL,
        Style,
        TileMatrix,
        TileMatrixLimits,
        TileMatrixSet,
        WMTSCapabilities,
    )

    CRSType = int | str | CRS

__all__ = ["WMTS"]


def _same_crs(supported_crs: str | None, crs: CRSType) -> bool:
    """Check if a ``SupportedCRS`` of a tile matrix set refers to ``crs``."""
    if supported_crs is None:
        return False
    try:
        return pyproj.CRS(supported_crs) == pyproj.CRS(crs)
    except ProjCRSError:
        return False


class WMTS:
    """Resolve a layer of a WMTS service and the tile matrix set to request it in.

    Parameters
    ----------
    url : str
        The base url of the WMTS service, e.g., https://basemap.nationalmap.gov/arcgis/rest/services/USGSTopo/MapServer/WMTS
        or the url of its capabilities document.
    layer : str
        The identifier or title of the layer. Namespaced names such as
        ``ns:layer`` are resolved without the namespace if needed.
    tile_matrix_set : str, optional
        Identifier of the tile matrix set, defaults to None. If None, the
        first tile matrix set linked to the layer whose CRS matches ``crs``
        is used, or the first linked one if ``crs`` is not given either.
    crs : str, int, or pyproj.CRS, optional
        The spatial reference system of the tiles, defaults to None.
    outformat : str, optional
        The image format of the tiles, defaults to None, i.e., the first
        format offered by the layer.
    validation : bool, optional
        Validate ``outformat`` against the formats of the layer, defaults to True.
    cache : CapabilitiesCache, optional
        A cache to retrieve the capabilities through, defaults to None, i.e.,
        a new cache. Share a cache between instances to request the
        capabilities of a service only once.
    ssl : bool, optional
        Whether to verify SSL certificates, defaults to ``True``. Only used if
        ``cache`` is not given.
    """

    def __init__(
        self,
        url: str,
        layer: str,
        tile_matrix_set: str | None = None,
        crs: CRSType | None = None,
        outformat: str | None = None,
        validation: bool = True,
        cache: CapabilitiesCache | None = None,
        ssl: bool = True,
    ) -> None:
        self.url = utils.capabilities_url(url)
        self.cache = CapabilitiesCache(ssl=ssl) if cache is None else cache
        self.capabilities: WMTSCapabilities = self.cache.fetch(self.url)

        lyr = self.capabilities.find_layer(layer)
        if lyr is None:
            raise InputValueError(
                "layer", (f"{n} for {t}" for n, t in self.get_validlayers().items()), layer
            )
        self.layer: Layer = lyr

        self.crs_str = None if crs is None else utils.validate_crs(crs)
        self.tile_matrix_set: TileMatrixSet = self._resolve_tile_matrix_set(tile_matrix_set, crs)

        if outformat is None:
            self.outformat = self.layer.formats[0] if self.layer.formats else None
        else:
            self.outformat = outformat
            if validation and outformat not in self.layer.formats:
                raise InputValueError("outformat", self.layer.formats, outformat)

    def _resolve_tile_matrix_set(
        self, identifier: str | None, crs: CRSType | None
    ) -> TileMatrixSet:
        linked = self.layer.tile_matrix_set_ids
        if identifier is not None:
            if identifier not in linked:
                raise InputValueError("tile_matrix_set", linked, identifier)
            candidates = [identifier]
        else:
            candidates = linked

        tms_list = [
            tms
            for tms in (self.capabilities.find_tile_matrix(c) for c in candidates)
            if tms is not None
        ]
        if crs is not None:
            tms_list = [tms for tms in tms_list if _same_crs(tms.supported_crs, crs)]

        if not tms_list:
            valid = [
                f"{tms.identifier} ({tms.supported_crs})"
                for tms in (self.capabilities.find_tile_matrix(i) for i in linked)
                if tms is not None
            ]
            given = identifier if crs is None else self.crs_str
            raise InputValueError("tile_matrix_set", valid, given)
        return tms_list[0]

    def get_validlayers(self) -> dict[str, str | None]:
        """Get the layers supported by the WMTS service as ``{identifier: title}``."""
        return {
            lyr.identifier or str(lyr.title): lyr.title for lyr in self.capabilities.layers
        }

    @property
    def style(self) -> Style | None:
        """The default style of the layer."""
        return self.layer.default_style

    @property
    def tile_matrices(self) -> tuple[TileMatrix, ...]:
        """The zoom levels of the selected tile matrix set."""
        return self.tile_matrix_set.tile_matrices

    @property
    def limits(self) -> tuple[TileMatrixLimits, ...]:
        """Tile row and column limits of the layer in the selected tile matrix set."""
        link = self.layer.get_link(str(self.tile_matrix_set.identifier))
        return () if link is None else link.limits

    @property
    def resource_urls(self) -> list[ResourceURL]:
        """RESTful tile templates of the layer in the selected output format."""
        return [
            r
            for r in self.layer.resource_urls
            if (r.resource_type or "tile").lower() == "tile"
            and (self.outformat is None or r.format == self.outformat)
        ]

    @property
    def gettile_url(self) -> str | None:
        """The KVP endpoint of the ``GetTile`` operation, if the service advertises one."""
        return self.capabilities.get_operation_url("GetTile")

    def __repr__(self) -> str:
        """Print the services properties."""
        return "\n".join(
            (
                "Connected to the WMTS service with the following properties:",
                f"URL: {self.url}",
                f"Version: {self.capabilities.version}",
                f"Layer: {self.layer.identifier} ({self.layer.title})",
                f"Tile Matrix Set: {self.tile_matrix_set.identifier}",
                f"Supported CRS: {self.tile_matrix_set.supported_crs}",
                f"Zoom Levels: {len(self.tile_matrices)}",
                f"Output Format: {self.outformat}",
            )
        )
