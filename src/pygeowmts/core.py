"""Retrieving and memoizing WMTS GetCapabilities documents."""

from __future__ import annotations

import functools
import os
import sys
from concurrent.futures import Future
from threading import Lock
from typing import TYPE_CHECKING, Callable, cast

import defusedxml
import defusedxml.ElementTree as ETree
import joblib
from loguru import logger

from pygeowmts import utils
from pygeowmts.capabilities import WMTSCapabilities
from pygeowmts.exceptions import InputTypeError, InvalidCapabilitiesError
from pygeowmts.xml2json import xml2json

if TYPE_CHECKING:
    from collections.abc import Iterable

    Loader = Callable[[str], "str | bytes"]

logger.configure(
    handlers=[
        {
            "sink": sys.stdout,
            "colorize": True,
            "format": " | ".join(
                [
                    "{time:YYYY-MM-DD at HH:mm:ss}",
                    "{name: ^15}.{function: ^15}:{line: >3}",
                    "{message}",
                ]
            ),
        }
    ]
)
if os.environ.get("HYRIVER_VERBOSE", "false").lower() == "true":
    logger.enable("pygeowmts")
else:
    logger.disable("pygeowmts")

MAX_CONN = 10
__all__ = ["CapabilitiesCache"]


class CapabilitiesCache:
    """Retrieve WMTS capabilities documents, once per URL.

    Notes
    -----
    Each distinct URL is requested at most once for the lifetime of the
    cache. A request for a URL that is already being retrieved, e.g., from
    another thread, waits for that retrieval instead of sending a new one.
    Failures are not cached, so a later request for the same URL tries again.

    Parameters
    ----------
    loader : callable, optional
        A function that takes a URL and returns the XML document as ``str``
        or ``bytes``, defaults to :func:`pygeowmts.utils.load_xml`.
    ssl : bool, optional
        Whether to verify SSL certificates when the default loader is used,
        defaults to ``True``.
    timeout : float, optional
        Request timeout in seconds for the default loader, defaults to 30.
    """

    def __init__(
        self,
        loader: Loader | None = None,
        ssl: bool = True,
        timeout: float = utils.TIMEOUT,
    ) -> None:
        self.loader = loader or functools.partial(utils.load_xml, ssl=ssl, timeout=timeout)
        self._lock = Lock()
        self._futures: dict[str, Future[WMTSCapabilities]] = {}

    def fetch(self, url: str) -> WMTSCapabilities:
        """Get the capabilities of a WMTS service.

        Parameters
        ----------
        url : str
            The GetCapabilities URL of the service, see
            :func:`pygeowmts.utils.capabilities_url`.

        Returns
        -------
        WMTSCapabilities
            The parsed capabilities. Requests for the same URL return
            the same object.

        Raises
        ------
        InvalidCapabilitiesError
            If the response is not XML or has no ``ServiceIdentification``.
        """
        if not isinstance(url, str) or not url:
            raise InputTypeError("url", "non-empty str")

        with self._lock:
            future = self._futures.get(url)
            is_owner = future is None
            if future is None:
                future = Future()
                self._futures[url] = future

        if not is_owner:
            logger.debug(f"Using the memoized capabilities of {url}")
            return future.result()

        logger.debug(f"Retrieving capabilities from {url}")
        try:
            capabilities = self._retrieve(url)
        except BaseException as ex:
            logger.debug(f"Failed to retrieve capabilities from {url}: {ex}")
            with self._lock:
                if self._futures.get(url) is future:
                    del self._futures[url]
            future.set_exception(ex)
            raise
        future.set_result(capabilities)
        return capabilities

    def _retrieve(self, url: str) -> WMTSCapabilities:
        xml = self.loader(url)
        try:
            raw = xml2json(xml)
        except (ETree.ParseError, defusedxml.DefusedXmlException) as ex:
            raise InvalidCapabilitiesError(url, str(ex)) from ex

        if raw.get("ServiceIdentification") is None:
            raise InvalidCapabilitiesError(url)
        return WMTSCapabilities(raw)

    def fetch_all(self, urls: Iterable[str], n_jobs: int = MAX_CONN) -> list[WMTSCapabilities]:
        """Get the capabilities of several services in parallel.

        Parameters
        ----------
        urls : list of str
            GetCapabilities URLs, duplicates are retrieved only once.
        n_jobs : int, optional
            The maximum number of concurrent requests, defaults to 10.

        Returns
        -------
        list of WMTSCapabilities
            The capabilities in the same order as ``urls``.
        """
        url_list = list(urls)
        if not url_list:
            return []
        n_jobs = min(n_jobs, len(url_list))
        caps = joblib.Parallel(n_jobs=n_jobs, prefer="threads")(
            joblib.delayed(self.fetch)(u) for u in url_list
        )
        return cast("list[WMTSCapabilities]", caps)

    def clear(self) -> None:
        """Forget all the memoized capabilities."""
        with self._lock:
            self._futures.clear()

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._futures

    def __len__(self) -> int:
        with self._lock:
            return len(self._futures)

    def __repr__(self) -> str:
        """Print the URLs of the memoized capabilities."""
        with self._lock:
            urls = list(self._futures)
        return "\n".join(["Capabilities cache with the following URLs:", *urls])
