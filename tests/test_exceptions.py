"""Tests for exceptions and requests."""

from __future__ import annotations

import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from pygeowmts import WMTS, CapabilitiesCache, RetrySession, utils
from pygeowmts.exceptions import (
    InputTypeError,
    InputValueError,
    InvalidCapabilitiesError,
    ServiceError,
    ServiceUnavailableError,
)

URL = "https://tiles.example.com/wmts?service=WMTS&request=GetCapabilities"
NO_SERVICE_XML = """<Capabilities xmlns="http://www.opengis.net/wmts/1.0" version="1.0.0">
  <Contents><Layer><Identifier>a</Identifier></Layer></Contents>
</Capabilities>"""
EXCEPTION_REPORT = """<?xml version="1.0" encoding="UTF-8"?>
<ows:ExceptionReport xmlns:ows="http://www.opengis.net/ows/1.1" version="1.1.0">
  <ows:Exception exceptionCode="InvalidParameterValue" locator="layer">
    <ows:ExceptionText>Unknown layer: nope</ows:ExceptionText>
  </ows:Exception>
</ows:ExceptionReport>"""
MINIMAL_XML = """<Capabilities xmlns="http://www.opengis.net/wmts/1.0"
    xmlns:ows="http://www.opengis.net/ows/1.1" version="1.0.0">
  <ows:ServiceIdentification><ows:Title>Minimal</ows:Title></ows:ServiceIdentification>
  <Contents>
    <Layer>
      <ows:Title>Roads</ows:Title>
      <ows:Identifier>roads</ows:Identifier>
      <Format>image/png</Format>
      <TileMatrixSetLink><TileMatrixSet>WebMercator</TileMatrixSet></TileMatrixSetLink>
    </Layer>
    <TileMatrixSet>
      <ows:Identifier>WebMercator</ows:Identifier>
      <ows:SupportedCRS>EPSG:3857</ows:SupportedCRS>
    </TileMatrixSet>
  </Contents>
</Capabilities>"""


class TestCapabilitiesCache:
    def test_missing_service_identification(self):
        calls = []

        def loader(url):
            calls.append(url)
            return NO_SERVICE_XML

        cache = CapabilitiesCache(loader)
        with pytest.raises(InvalidCapabilitiesError) as ex:
            cache.fetch(URL)
        assert ex.value.url == URL
        assert URL in str(ex.value)
        assert "ServiceIdentification" in str(ex.value)
        assert URL not in cache
        assert calls == [URL]

    def test_exception_report(self):
        cache = CapabilitiesCache(lambda _: EXCEPTION_REPORT)
        with pytest.raises(InvalidCapabilitiesError) as ex:
            cache.fetch(URL)
        assert ex.value.reason is None

    def test_not_xml(self):
        cache = CapabilitiesCache(lambda _: "<html><body>Not found")
        with pytest.raises(InvalidCapabilitiesError) as ex:
            cache.fetch(URL)
        assert ex.value.reason is not None
        assert URL in str(ex.value)

    def test_failure_not_cached(self):
        responses = iter([NO_SERVICE_XML, MINIMAL_XML])
        cache = CapabilitiesCache(lambda _: next(responses))
        with pytest.raises(InvalidCapabilitiesError):
            cache.fetch(URL)
        caps = cache.fetch(URL)
        assert caps.service_identification.title == "Minimal"
        assert cache.fetch(URL) is caps

    def test_transport_error_propagates(self):
        def loader(url):
            raise ServiceUnavailableError(url)

        cache = CapabilitiesCache(loader)
        with pytest.raises(ServiceUnavailableError) as ex:
            cache.fetch(URL)
        assert URL in str(ex.value)
        assert len(cache) == 0

    def test_waiters_share_failure(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def loader(url):
            calls.append(url)
            started.set()
            release.wait(5)
            return NO_SERVICE_XML

        cache = CapabilitiesCache(loader)
        errors = []

        def fetch():
            try:
                cache.fetch(URL)
            except InvalidCapabilitiesError as ex:
                errors.append(ex)

        owner = threading.Thread(target=fetch)
        owner.start()
        assert started.wait(5)
        waiter = threading.Thread(target=fetch)
        waiter.start()
        time.sleep(0.2)
        release.set()
        owner.join()
        waiter.join()

        assert calls == [URL]
        assert len(errors) == 2
        assert errors[0] is errors[1]

    @pytest.mark.parametrize("url", ["", None, 42])
    def test_invalid_url(self, url):
        with pytest.raises(InputTypeError) as ex:
            CapabilitiesCache(lambda _: MINIMAL_XML).fetch(url)
        assert "The url argument" in str(ex.value)


class TestWMTSException:
    def service(self, **kwargs) -> WMTS:
        cache = CapabilitiesCache(lambda _: MINIMAL_XML)
        return WMTS("https://tiles.example.com/wmts", cache=cache, **kwargs)

    def test_invalid_layer(self):
        with pytest.raises(InputValueError) as ex:
            self.service(layer="rivers")
        assert "Given layer (rivers) is invalid" in str(ex.value)
        assert "roads for Roads" in str(ex.value)

    def test_invalid_tile_matrix_set(self):
        with pytest.raises(InputValueError) as ex:
            self.service(layer="roads", tile_matrix_set="EPSG:4326")
        assert "WebMercator" in str(ex.value)

    def test_unsupported_crs(self):
        with pytest.raises(InputValueError) as ex:
            self.service(layer="roads", crs=4326)
        assert "WebMercator (EPSG:3857)" in str(ex.value)

    def test_invalid_crs(self):
        with pytest.raises(InputTypeError) as ex:
            self.service(layer="roads", crs="x")
        assert "The crs argument" in str(ex.value)

    def test_invalid_outformat(self):
        with pytest.raises(InputValueError) as ex:
            self.service(layer="roads", outformat="image/tiff")
        assert "image/png" in str(ex.value)
        service = self.service(layer="roads", outformat="image/tiff", validation=False)
        assert service.outformat == "image/tiff"

    def test_invalid_capabilities(self):
        cache = CapabilitiesCache(lambda _: NO_SERVICE_XML)
        with pytest.raises(InvalidCapabilitiesError) as ex:
            WMTS("https://tiles.example.com/wmts", "a", cache=cache)
        assert "request=GetCapabilities" in str(ex.value)


def test_check_response():
    assert utils.check_response(EXCEPTION_REPORT) == "Unknown layer: nope"
    assert utils.check_response("plain text error") == "plain text error"


def test_service_error_message():
    err = ServiceError("Unknown layer: nope", URL)
    assert "Unknown layer: nope" in str(err)
    assert URL in str(err)


class CapabilitiesHandler(BaseHTTPRequestHandler):
    routes = {
        "/wmts": (200, MINIMAL_XML),
        "/missing": (404, EXCEPTION_REPORT),
        "/error": (500, EXCEPTION_REPORT),
    }
    hits: list[str] = []

    def do_GET(self):
        path = self.path.split("?", 1)[0]
        self.hits.append(path)
        status, body = self.routes.get(path, (404, "not found"))
        data = body.encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/xml")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, *args):
        pass


@pytest.fixture(scope="module")
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), CapabilitiesHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


class TestTransport:
    def test_fetch(self, server):
        url = f"{server}/wmts?service=WMTS&request=GetCapabilities"
        caps = CapabilitiesCache().fetch(url)
        assert caps.service_identification.title == "Minimal"
        assert caps.find_layer("roads").formats == ("image/png",)

    def test_load_xml(self, server):
        assert utils.load_xml(f"{server}/wmts") == MINIMAL_XML.encode()

    def test_client_error(self, server):
        with pytest.raises(ServiceError) as ex:
            CapabilitiesCache().fetch(f"{server}/missing")
        assert "Unknown layer: nope" in str(ex.value)
        assert "/missing" in str(ex.value)

    def test_server_error_after_retries(self, server):
        CapabilitiesHandler.hits.clear()
        with RetrySession(retries=1, backoff_factor=0) as session, pytest.raises(
            ServiceError
        ) as ex:
            session.get(f"{server}/error")
        assert "Unknown layer: nope" in str(ex.value)
        assert CapabilitiesHandler.hits == ["/error", "/error"]

    def test_unavailable(self):
        with socket.socket() as sock:
            sock.bind(("127.0.0.1", 0))
            port = sock.getsockname()[1]
        url = f"http://127.0.0.1:{port}/wmts"
        with RetrySession(retries=0) as session, pytest.raises(ServiceUnavailableError) as ex:
            session.get(url)
        assert url in str(ex.value)
