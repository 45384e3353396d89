"""Pytest configuration and fixtures."""

from pathlib import Path
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from mirrorer.mime import load_additional_mime_types
from mirrorer.storage import BlobUploader, RemoteWriteFailed

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

SITEMAP_INDEX = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap><loc>{base}/sitemap_1.xml</loc></sitemap>
  <sitemap><loc>{base}/sitemap_2.xml</loc></sitemap>
</sitemapindex>
"""

SITEMAP_1 = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>{base}/</loc><lastmod>2025-11-06T11:00:00+00:00</lastmod></url>
</urlset>
"""

SITEMAP_2 = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>{base}/1</loc><lastmod>2025-11-05T11:00:00+00:00</lastmod></url>
  <url><loc>{base}/2</loc><lastmod>2025-11-07T11:00:00+00:00</lastmod></url>
  <url><loc>{base}/3</loc></url>
  <url><loc>{base}/500</loc><lastmod>2025-01-07T11:00:00+00:00</lastmod></url>
</urlset>
"""

HOME_PAGE = """<!DOCTYPE html>
<html>
<head>
  <title>Home</title>
  <link rel="stylesheet" href="assets/style.css">
  <script src="assets/script.js"></script>
</head>
<body>
  <a href="/child">Child</a>
  <a href="/redirect">Redirect</a>
  <a href="/spreadsheet.xlsx">Spreadsheet</a>
  <a href="/external/redirect">External redirect</a>
  <img src="/assets/image.jpg">
  <a href="https://disallowed.com">Disallowed host</a>
  <a href="/disallowed">Disallowed page</a>
  <a href="/404">Missing</a>
  <a href="/503">Unavailable</a>
</body>
</html>
"""

STYLESHEET = """@font-face { src: url('https://example.com/fonts/customfont.woff2'); }
body { background-image: url('/assets/background.png'); }
"""


def simple_page(title: str) -> str:
    return f"<html><head><title>{title}</title></head><body><p>{title}</p></body></html>"


def build_site_app(requested: list[str]) -> web.Application:
    """A small site with sitemaps, assets, redirects and failing pages."""

    @web.middleware
    async def record(request, handler):
        requested.append(request.path)
        return await handler(request)

    def base(request: web.Request) -> str:
        return f"{request.scheme}://{request.host}"

    def xml(template: str):
        async def handler(request):
            return web.Response(text=template.format(base=base(request)), content_type="application/xml")

        return handler

    def html(body: str):
        async def handler(request):
            return web.Response(text=body, content_type="text/html")

        return handler

    def raw(body: bytes, content_type: str):
        async def handler(request):
            return web.Response(body=body, content_type=content_type)

        return handler

    def status(code: int):
        async def handler(request):
            return web.Response(status=code, text="error")

        return handler

    async def redirect(request):
        raise web.HTTPMovedPermanently("/redirected")

    async def external_redirect(request):
        raise web.HTTPSeeOther("https://disallowed.com")

    app = web.Application(middlewares=[record])
    app.router.add_get("/sitemap.xml", xml(SITEMAP_INDEX))
    app.router.add_get("/sitemap_1.xml", xml(SITEMAP_1))
    app.router.add_get("/sitemap_2.xml", xml(SITEMAP_2))
    app.router.add_get("/", html(HOME_PAGE))
    app.router.add_get("/assets/style.css", raw(STYLESHEET.encode(), "text/css"))
    app.router.add_get("/assets/script.js", raw(b"console.log('hello');", "text/javascript"))
    app.router.add_get("/assets/image.jpg", raw(b"\xff\xd8\xff\xd9", "image/jpeg"))
    app.router.add_get("/assets/background.png", raw(b"\x89PNG\r\n\x1a\n", "image/png"))
    app.router.add_get("/spreadsheet.xlsx", raw(b"PK\x03\x04", XLSX_TYPE))
    app.router.add_get("/redirect", redirect)
    app.router.add_get("/external/redirect", external_redirect)
    app.router.add_get("/500", status(500))
    app.router.add_get("/503", status(503))
    for path in ("/child", "/disallowed", "/redirected", "/1", "/2", "/3"):
        app.router.add_get(path, html(simple_page(path)))
    return app


class FakeUploader(BlobUploader):
    """Records uploads, failing for one key."""

    def __init__(self, fail_key: str | None = None):
        self.calls: list[tuple[Path, str, str]] = []
        self.fail_key = fail_key

    async def upload_file(self, file_path, destination_key, content_type):
        self.calls.append((Path(file_path), destination_key, content_type))
        if destination_key == self.fail_key:
            raise RemoteWriteFailed("failed to write object")
        return True


@pytest.fixture(autouse=True, scope="session")
def additional_mime_types():
    """Register extra extensions the way the mirror process does at startup."""
    load_additional_mime_types()


@pytest.fixture
def requested_paths():
    """Paths requested from the fixture site, in order."""
    return []


@pytest_asyncio.fixture
async def site_server(requested_paths):
    """Fixture site served on a random local port."""
    server = TestServer(build_site_app(requested_paths))
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def site_url(site_server):
    """Base URL of the fixture site, without a trailing slash."""
    return str(site_server.make_url("/")).rstrip("/")


@pytest.fixture
def sample_html():
    """Sample HTML for testing."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
        <title>Test Page</title>
        <link rel="stylesheet" href="/static/site.css">
        <script src="/static/app.js"></script>
    </head>
    <body>
        <h1>Welcome</h1>
        <p>This is a test page with some content.</p>
        <a href="/page1">Page 1</a>
        <a href="/page2#section">Page 2</a>
        <a href="#top">Top</a>
        <a href="/page1">Page 1 again</a>
        <img src="images/logo.png">
        <a href="https://external.com">External</a>
    </body>
    </html>
    """


@pytest.fixture
def sample_url():
    """Sample base URL for testing."""
    return "https://example.com"
