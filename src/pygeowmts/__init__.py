"""Top-level package for PyGeoWMTS."""

from __future__ import annotations

import os
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from pygeowmts import exceptions
from pygeowmts.capabilities import (
    BoundingBox,
    Layer,
    LegendURL,
    Operation,
    OperationsMetadata,
    ResourceURL,
    ServiceIdentification,
    ServiceProvider,
    Style,
    TileMatrix,
    TileMatrixLimits,
    TileMatrixSet,
    TileMatrixSetLink,
    WMTSCapabilities,
)
from pygeowmts.core import CapabilitiesCache
from pygeowmts.pygeowmts import WMTS
from pygeowmts.utils import RetrySession, capabilities_url, to_sequence, validate_crs
from pygeowmts.xml2json import xml2json

cert_path = os.getenv("HYRIVER_SSL_CERT")
if cert_path is not None:
    from pyproj.network import set_ca_bundle_path

    if not Path(cert_path).exists():
        raise FileNotFoundError(cert_path)
    set_ca_bundle_path(cert_path)

try:
    __version__ = version("pygeowmts")
except PackageNotFoundError:
    __version__ = "999"

__all__ = [
    "WMTS",
    "BoundingBox",
    "CapabilitiesCache",
    "Layer",
    "LegendURL",
    "Operation",
    "OperationsMetadata",
    "ResourceURL",
    "RetrySession",
    "ServiceIdentification",
    "ServiceProvider",
    "Style",
    "TileMatrix",
    "TileMatrixLimits",
    "TileMatrixSet",
    "TileMatrixSetLink",
    "WMTSCapabilities",
    "__version__",
    "capabilities_url",
    "exceptions",
    "to_sequence",
    "validate_crs",
    "xml2json",
]
