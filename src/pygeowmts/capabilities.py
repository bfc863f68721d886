"""Typed model of a WMTS 1.0.0 GetCapabilities document."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pygeowmts.exceptions import InputTypeError
from pygeowmts.utils import to_sequence
from pygeowmts.xml2json import TEXT_KEY, xml2json

if TYPE_CHECKING:
    from collections.abc import Mapping
    from xml.etree.ElementTree import Element

__all__ = [
    "BoundingBox",
    "LegendURL",
    "Layer",
    "Operation",
    "OperationsMetadata",
    "ResourceURL",
    "ServiceIdentification",
    "ServiceProvider",
    "Style",
    "TileMatrix",
    "TileMatrixLimits",
    "TileMatrixSet",
    "TileMatrixSetLink",
    "WMTSCapabilities",
]


def _as_mapping(raw: Any) -> Mapping[str, Any]:
    return raw if isinstance(raw, dict) else {}


def _text(value: Any) -> str | None:
    """Get the text of a node, the first one if it's repeated, e.g., multilingual titles."""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get(TEXT_KEY)
    if value is None:
        return None
    return str(value)


def _texts(value: Any) -> tuple[str, ...]:
    return tuple(t for t in (_text(v) for v in to_sequence(value)) if t is not None)


def _int(value: Any) -> int | None:
    with contextlib.suppress(TypeError, ValueError):
        return int(_text(value))  # pyright: ignore[reportArgumentType]
    return None


def _float(value: Any) -> float | None:
    with contextlib.suppress(TypeError, ValueError):
        return float(_text(value))  # pyright: ignore[reportArgumentType]
    return None


def _keywords(raw: Mapping[str, Any]) -> tuple[str, ...]:
    # OWS uses Keywords/Keyword, some servers write Keyword directly under the parent.
    keywords = raw.get("Keywords", raw.get("Keyword"))
    if isinstance(keywords, dict) and "Keyword" in keywords:
        keywords = keywords["Keyword"]
    return _texts(keywords)


def _href(raw: Any) -> str | None:
    if isinstance(raw, dict):
        return raw.get("xlink:href", raw.get("href"))
    return None


@dataclass(frozen=True)
class BoundingBox:
    """A bounding box defined by its lower and upper corners.

    Corners are kept as they appear in the document, i.e., space-separated
    coordinates, use :attr:`bounds` for numeric values.
    """

    lower_corner: str | None
    upper_corner: str | None
    crs: str | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> BoundingBox:
        raw = _as_mapping(raw)
        return cls(_text(raw.get("LowerCorner")), _text(raw.get("UpperCorner")), raw.get("crs"))

    @property
    def bounds(self) -> tuple[float, float, float, float] | None:
        """Bounds as ``(west, south, east, north)`` or ``None`` if a corner is malformed."""
        try:
            west, south = (float(c) for c in str(self.lower_corner).split())
            east, north = (float(c) for c in str(self.upper_corner).split())
        except ValueError:
            return None
        return west, south, east, north


@dataclass(frozen=True)
class LegendURL:
    """Legend of a style, WMTS encodes it as a ``format`` and ``xlink:href`` attribute pair."""

    format: str | None
    href: str | None

    @classmethod
    def from_raw(cls, raw: Any) -> LegendURL:
        raw = _as_mapping(raw)
        return cls(raw.get("format"), _href(raw))


@dataclass(frozen=True)
class ResourceURL:
    """URL template for RESTful access to tiles or feature info."""

    format: str | None
    resource_type: str | None
    template: str | None

    @classmethod
    def from_raw(cls, raw: Any) -> ResourceURL:
        raw = _as_mapping(raw)
        return cls(raw.get("format"), raw.get("resourceType"), raw.get("template"))


@dataclass(frozen=True)
class Style:
    """A style of a layer."""

    identifier: str | None
    title: str | None
    abstract: str | None = None
    keywords: tuple[str, ...] = ()
    legend_urls: tuple[LegendURL, ...] = ()
    is_default: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> Style:
        raw = _as_mapping(raw)
        return cls(
            identifier=_text(raw.get("Identifier")),
            title=_text(raw.get("Title")),
            abstract=_text(raw.get("Abstract")),
            keywords=_keywords(raw),
            legend_urls=tuple(LegendURL.from_raw(lg) for lg in to_sequence(raw.get("LegendURL"))),
            is_default=str(raw.get("isDefault", "false")).lower() in ("true", "1"),
        )


@dataclass(frozen=True)
class TileMatrixLimits:
    """Range of tile rows and columns available for a tile matrix."""

    tile_matrix: str | None
    min_row: int | None
    max_row: int | None
    min_col: int | None
    max_col: int | None

    @classmethod
    def from_raw(cls, raw: Any) -> TileMatrixLimits:
        raw = _as_mapping(raw)
        return cls(
            tile_matrix=_text(raw.get("TileMatrix")),
            min_row=_int(raw.get("MinTileRow")),
            max_row=_int(raw.get("MaxTileRow")),
            min_col=_int(raw.get("MinTileCol")),
            max_col=_int(raw.get("MaxTileCol")),
        )


@dataclass(frozen=True)
class TileMatrixSetLink:
    """Link between a layer and a tile matrix set, optionally with limits."""

    tile_matrix_set: str | None
    limits: tuple[TileMatrixLimits, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any) -> TileMatrixSetLink:
        if not isinstance(raw, dict):
            return cls(_text(raw))
        limits = _as_mapping(raw.get("TileMatrixSetLimits")).get("TileMatrixLimits")
        return cls(
            tile_matrix_set=_text(raw.get("TileMatrixSet")),
            limits=tuple(TileMatrixLimits.from_raw(lm) for lm in to_sequence(limits)),
        )


@dataclass(frozen=True)
class TileMatrix:
    """A single zoom level of a tile matrix set."""

    identifier: str | None
    scale_denominator: float | None
    top_left_corner: str | None
    tile_width: int | None
    tile_height: int | None
    matrix_width: int | None
    matrix_height: int | None
    title: str | None = None
    abstract: str | None = None
    keywords: tuple[str, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any) -> TileMatrix:
        raw = _as_mapping(raw)
        return cls(
            identifier=_text(raw.get("Identifier")),
            scale_denominator=_float(raw.get("ScaleDenominator")),
            top_left_corner=_text(raw.get("TopLeftCorner")),
            tile_width=_int(raw.get("TileWidth")),
            tile_height=_int(raw.get("TileHeight")),
            matrix_width=_int(raw.get("MatrixWidth")),
            matrix_height=_int(raw.get("MatrixHeight")),
            title=_text(raw.get("Title")),
            abstract=_text(raw.get("Abstract")),
            keywords=_keywords(raw),
        )


@dataclass(frozen=True)
class TileMatrixSet:
    """A tile matrix set, i.e., the tiling scheme shared by layers that link to it."""

    identifier: str | None
    tile_matrices: tuple[TileMatrix, ...] = ()
    title: str | None = None
    abstract: str | None = None
    keywords: tuple[str, ...] = ()
    supported_crs: str | None = None
    well_known_scale_set: str | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> TileMatrixSet:
        raw = _as_mapping(raw)
        return cls(
            identifier=_text(raw.get("Identifier")),
            tile_matrices=tuple(TileMatrix.from_raw(m) for m in to_sequence(raw.get("TileMatrix"))),
            title=_text(raw.get("Title")),
            abstract=_text(raw.get("Abstract")),
            keywords=_keywords(raw),
            supported_crs=_text(raw.get("SupportedCRS")),
            well_known_scale_set=_text(raw.get("WellKnownScaleSet")),
        )

    def find_matrix(self, identifier: str) -> TileMatrix | None:
        """Get a tile matrix (zoom level) by its identifier."""
        return next((m for m in self.tile_matrices if m.identifier == identifier), None)


@dataclass(frozen=True)
class Layer:
    """A layer of a WMTS service."""

    title: str | None
    identifier: str | None = None
    abstract: str | None = None
    wgs84_bbox: BoundingBox | None = None
    styles: tuple[Style, ...] = ()
    formats: tuple[str, ...] = ()
    info_formats: tuple[str, ...] = ()
    tile_matrix_set_links: tuple[TileMatrixSetLink, ...] = ()
    resource_urls: tuple[ResourceURL, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any) -> Layer:
        raw = _as_mapping(raw)
        bbox = raw.get("WGS84BoundingBox")
        return cls(
            title=_text(raw.get("Title")),
            identifier=_text(raw.get("Identifier")),
            abstract=_text(raw.get("Abstract")),
            wgs84_bbox=None if bbox is None else BoundingBox.from_raw(bbox),
            styles=tuple(Style.from_raw(s) for s in to_sequence(raw.get("Style"))),
            formats=_texts(raw.get("Format")),
            info_formats=_texts(raw.get("InfoFormat", raw.get("infoFormat"))),
            tile_matrix_set_links=tuple(
                TileMatrixSetLink.from_raw(lk) for lk in to_sequence(raw.get("TileMatrixSetLink"))
            ),
            resource_urls=tuple(ResourceURL.from_raw(r) for r in to_sequence(raw.get("ResourceURL"))),
        )

    @property
    def tile_matrix_set_ids(self) -> list[str]:
        """Identifiers of the tile matrix sets that the layer is available in."""
        return [lk.tile_matrix_set for lk in self.tile_matrix_set_links if lk.tile_matrix_set]

    def get_link(self, tile_matrix_set: str) -> TileMatrixSetLink | None:
        """Get the link of the layer to a tile matrix set."""
        return next(
            (lk for lk in self.tile_matrix_set_links if lk.tile_matrix_set == tile_matrix_set),
            None,
        )

    @property
    def default_style(self) -> Style | None:
        """The style flagged as default, or the first style if none is flagged."""
        return next((s for s in self.styles if s.is_default), next(iter(self.styles), None))

    def tile_templates(self, outformat: str | None = None) -> list[str]:
        """URL templates of tile resources, optionally limited to an output format."""
        return [
            r.template
            for r in self.resource_urls
            if r.template
            and (r.resource_type or "tile").lower() == "tile"
            and (outformat is None or r.format == outformat)
        ]


@dataclass(frozen=True)
class ServiceIdentification:
    """Metadata about the service itself."""

    title: str | None
    abstract: str | None = None
    keywords: tuple[str, ...] = ()
    service_type: str | None = None
    service_type_version: str | None = None
    fees: str | None = None
    access_constraints: str | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> ServiceIdentification:
        raw = _as_mapping(raw)
        return cls(
            title=_text(raw.get("Title")),
            abstract=_text(raw.get("Abstract")),
            keywords=_keywords(raw),
            service_type=_text(raw.get("ServiceType")),
            service_type_version=_text(raw.get("ServiceTypeVersion")),
            fees=_text(raw.get("Fees")),
            access_constraints=_text(raw.get("AccessConstraints")),
        )


@dataclass(frozen=True)
class ServiceProvider:
    """The organization that operates the service.

    ``contact`` keeps the ``ServiceContact`` node as parsed since its
    structure is deep and rarely used.
    """

    name: str | None
    site: str | None = None
    contact: Any = None

    @classmethod
    def from_raw(cls, raw: Any) -> ServiceProvider:
        raw = _as_mapping(raw)
        return cls(
            name=_text(raw.get("ProviderName")),
            site=_href(raw.get("ProviderSite")),
            contact=raw.get("ServiceContact"),
        )


@dataclass(frozen=True)
class Operation:
    """An operation, e.g., ``GetTile``, with the URLs it accepts GET requests on."""

    name: str | None
    get_urls: tuple[str, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any) -> Operation:
        raw = _as_mapping(raw)
        urls = []
        for dcp in to_sequence(raw.get("DCP")):
            http = _as_mapping(_as_mapping(dcp).get("HTTP"))
            urls.extend(_href(g) for g in to_sequence(http.get("Get")))
        return cls(raw.get("name"), tuple(u for u in urls if u))


@dataclass(frozen=True)
class OperationsMetadata:
    """Operations offered by the service."""

    operations: tuple[Operation, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any) -> OperationsMetadata:
        ops = _as_mapping(raw).get("Operation")
        return cls(tuple(Operation.from_raw(op) for op in to_sequence(ops)))

    def get_operation(self, name: str) -> Operation | None:
        """Get an operation by its name."""
        return next((op for op in self.operations if op.name == name), None)


class WMTSCapabilities:
    """Capabilities of a WMTS service.

    Notes
    -----
    Layers and tile matrix sets are extracted once, when the object is
    created, and are exposed as tuples so they can be shared between
    callers. Entries are not validated, a malformed entry is kept with
    the fields that could be read and the rest set to ``None``.

    Parameters
    ----------
    raw : dict
        The GetCapabilities document converted to a dictionary, see
        :func:`pygeowmts.xml2json.xml2json`.
    """

    def __init__(self, raw: Mapping[str, Any]) -> None:
        self.raw = MappingProxyType(dict(raw))
        self.version = _text(raw.get("version", raw.get("Version")))

        contents = _as_mapping(raw.get("Contents"))
        self.layers = tuple(Layer.from_raw(lyr) for lyr in to_sequence(contents.get("Layer")))
        self.tile_matrix_sets = tuple(
            TileMatrixSet.from_raw(tms) for tms in to_sequence(contents.get("TileMatrixSet"))
        )

        self.service_identification = self._section(ServiceIdentification, "ServiceIdentification")
        self.service_provider = self._section(ServiceProvider, "ServiceProvider")
        self.operations_metadata = self._section(OperationsMetadata, "OperationsMetadata")
        self.service_metadata_url = _href(raw.get("ServiceMetadataURL"))

    def _section(self, section: Any, key: str) -> Any:
        return None if self.raw.get(key) is None else section.from_raw(self.raw[key])

    @classmethod
    def from_xml(cls, xml: str | bytes | Element) -> WMTSCapabilities:
        """Create the capabilities from a GetCapabilities XML document."""
        return cls(xml2json(xml))

    def find_layer(self, name: str) -> Layer | None:
        """Find the layer corresponding to a given layer name.

        Notes
        -----
        Names are resolved in this order, the first layer in the document
        that matches wins:

        * A layer whose identifier or title is exactly ``name``.
        * If ``name`` is namespaced, e.g., ``ns:layer``, a layer whose
          identifier or title matches the name without the namespace, since
          capabilities documents usually list layers without it.

        Parameters
        ----------
        name : str
            The layer name to resolve.

        Returns
        -------
        Layer or None
            The resolved layer, or ``None`` if the name could not be resolved.
        """
        if not isinstance(name, str):
            raise InputTypeError("name", "str")
        match = self._match_layer(name)
        if match is None and ":" in name:
            match = self._match_layer(name.split(":", 1)[1])
        return match

    def _match_layer(self, name: str) -> Layer | None:
        return next(
            (lyr for lyr in self.layers if name in (lyr.identifier, lyr.title)),
            None,
        )

    def find_tile_matrix(self, identifier: str) -> TileMatrixSet | None:
        """Find a tile matrix set by its identifier.

        Parameters
        ----------
        identifier : str
            The identifier of the tile matrix set, e.g., ``EPSG:3857``.

        Returns
        -------
        TileMatrixSet or None
            The first tile matrix set with the given identifier, or ``None``.
        """
        if not isinstance(identifier, str):
            raise InputTypeError("identifier", "str")
        return next((tms for tms in self.tile_matrix_sets if tms.identifier == identifier), None)

    def get_operation_url(self, name: str) -> str | None:
        """Get the first GET URL of an operation, e.g., ``GetTile``."""
        if self.operations_metadata is None:
            return None
        op = self.operations_metadata.get_operation(name)
        if op is None or not op.get_urls:
            return None
        return op.get_urls[0]

    def __repr__(self) -> str:
        """Print a summary of the capabilities."""
        title = self.service_identification.title if self.service_identification else None
        return "\n".join(
            [
                "WMTS capabilities:",
                f"    Title: {title}",
                f"    Version: {self.version}",
                f"    Layers: {len(self.layers)}",
                f"    Tile matrix sets: {', '.join(str(t.identifier) for t in self.tile_matrix_sets)}",
            ]
        )
