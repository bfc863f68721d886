"""Some utilities for PyGeoWMTS."""

from __future__ import annotations

import contextlib
import os
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, TypeVar

import defusedxml.ElementTree as ETree
import pyproj
import requests
import urllib3
from pyproj.exceptions import CRSError as ProjCRSError
from requests.adapters import HTTPAdapter
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import RequestException
from urllib3.exceptions import InsecureRequestWarning
from yarl import URL

from pygeowmts.exceptions import InputTypeError, ServiceError, ServiceUnavailableError

if TYPE_CHECKING:
    from pyproj import CRS
    from requests import Response
    from typing_extensions import Self

    CRSType = int | str | CRS

T = TypeVar("T")
TIMEOUT = 30
__all__ = ["RetrySession", "capabilities_url", "load_xml", "to_sequence", "validate_crs"]


def check_response(resp: str) -> str:
    """Extract error message from a response, if any."""
    try:
        root = ETree.fromstring(resp)
    except ETree.ParseError:
        return resp
    else:
        try:
            return str(root[-1][0].text).strip()
        except IndexError:
            try:
                return str(root[-1].text).strip()
            except IndexError:
                return str(root.text).strip()


class RetrySession:
    """Configures the passed-in session to retry on failed requests.

    Notes
    -----
    The fails can be due to connection errors, specific HTTP response
    codes and 30X redirections. The code was originally based on:
    https://github.com/bustawin/retry-requests

    Parameters
    ----------
    retries : int, optional
        The number of maximum retries before raising an exception, defaults to 3.
    backoff_factor : float, optional
        A factor used to compute the waiting time between retries, defaults to 0.3.
    status_to_retry : tuple, optional
        A tuple of status codes that trigger the reply behaviour, defaults to (500, 502, 504).
    prefixes : tuple, optional
        The prefixes to consider, defaults to ("http://", "https://")
    timeout : float, optional
        Seconds to wait for the server before giving up, defaults to 30.
    ssl : bool, optional
        If ``True`` verify SSL certificates, defaults to ``True``.
    """

    def __init__(
        self,
        retries: int = 3,
        backoff_factor: float = 0.3,
        status_to_retry: tuple[int, ...] = (500, 502, 504),
        prefixes: tuple[str, ...] = ("http://", "https://"),
        timeout: float = TIMEOUT,
        ssl: bool = True,
    ) -> None:
        self.timeout = timeout
        self.ssl_cert = os.getenv("HYRIVER_SSL_CERT")

        self.session = requests.Session()
        self.session.cert = self.ssl_cert

        if not ssl:
            urllib3.disable_warnings(InsecureRequestWarning)
            self.session.verify = False

        adapter = HTTPAdapter(
            max_retries=urllib3.Retry(
                total=retries,
                read=retries,
                connect=retries,
                backoff_factor=backoff_factor,
                status_forcelist=status_to_retry,
                allowed_methods=None,
                raise_on_status=False,
            )
        )
        for prefix in prefixes:
            self.session.mount(prefix, adapter)

    def __del__(self) -> None:
        """Ensure resources are cleaned up."""
        # Suppress errors during garbage collection
        with contextlib.suppress(Exception):
            self.close()

    def get(
        self,
        url: str,
        payload: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, Any] | None = None,
    ) -> Response:
        """Retrieve data from a url by GET and return the Response."""
        params = params or payload
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except RequestsConnectionError as ex:
            raise ServiceUnavailableError(url) from ex
        try:
            resp.raise_for_status()
        except RequestException as ex:
            raise ServiceError(check_response(resp.text), url) from ex
        else:
            return resp

    def close(self) -> None:
        """Close the session."""
        self.session.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def load_xml(url: str, ssl: bool = True, timeout: float = TIMEOUT) -> bytes:
    """Retrieve an XML document from a URL.

    Parameters
    ----------
    url : str
        The URL of the document.
    ssl : bool, optional
        Whether to verify SSL certificates, defaults to ``True``.
    timeout : float, optional
        Seconds to wait for the server, defaults to 30.

    Returns
    -------
    bytes
        The raw body of the response, the XML parser takes care of its encoding.
    """
    with RetrySession(ssl=ssl, timeout=timeout) as session:
        return session.get(url).content


def to_sequence(value: T | list[T] | tuple[T, ...] | None) -> tuple[T, ...]:
    """Normalize a value that occurs zero, one, or many times into a tuple.

    XML-to-dict conversion collapses an element that occurs only once into a
    bare value while repeated elements become a list. This function turns all
    three shapes into a tuple.

    Parameters
    ----------
    value : any
        ``None``, a single item, or a list/tuple of items.

    Returns
    -------
    tuple
        The items in their original order.

    Examples
    --------
    >>> to_sequence(None)
    ()
    >>> to_sequence({"Identifier": "a"})
    ({'Identifier': 'a'},)
    >>> to_sequence(["a", "b"])
    ('a', 'b')
    """
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return (value,)


def capabilities_url(url: str) -> str:
    """Get the GetCapabilities URL of a WMTS service.

    Notes
    -----
    URLs that already contain a ``request`` query parameter (in any case)
    or point to a static ``.xml`` document, e.g., RESTful
    ``WMTSCapabilities.xml`` endpoints, are returned as is.

    Parameters
    ----------
    url : str
        The base URL of the WMTS service.

    Returns
    -------
    str
        The URL for requesting the capabilities document.

    Examples
    --------
    >>> capabilities_url("https://maps.example.com/wmts")
    'https://maps.example.com/wmts?service=WMTS&request=GetCapabilities'
    >>> capabilities_url("https://maps.example.com/1.0.0/WMTSCapabilities.xml")
    'https://maps.example.com/1.0.0/WMTSCapabilities.xml'
    """
    url_obj = URL(url)
    if url_obj.path.lower().endswith(".xml"):
        return url
    if any(k.lower() == "request" for k in url_obj.query):
        return url
    return str(url_obj.update_query(service="WMTS", request="GetCapabilities"))


def validate_crs(crs: CRSType) -> str:
    """Validate a CRS.

    Parameters
    ----------
    crs : str, int, or pyproj.CRS
        Input CRS.

    Returns
    -------
    str
        Validated CRS as a string.
    """
    try:
        return pyproj.CRS(crs).to_string()
    except ProjCRSError as ex:
        raise InputTypeError("crs", "a valid CRS") from ex
