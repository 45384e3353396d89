"""Tests for drift checking and notifications."""

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from mirrorer.drift_checker import DriftChecker
from mirrorer.models import DriftSummary, Page, TopUrls, UrlHitCount
from mirrorer.notifiers import (
    DriftNotifier,
    NotifyFailed,
    StdoutDriftNotifier,
    WebhookDriftNotifier,
    format_summary,
)
from mirrorer.page_comparer import ComparisonFailed, PageComparer


class FakePageFetcher:
    """Serves canned pages, raising for paths listed as failing."""

    def __init__(self, live, mirror, failing=()):
        self.live = live
        self.mirror = mirror
        self.failing = set(failing)
        self.calls = []

    async def fetch_live_page(self, path):
        self.calls.append(("live", path))
        if ("live", path) in self.failing:
            raise aiohttp.ClientConnectionError("connection reset")
        return self.live[path]

    async def fetch_mirror_page(self, path):
        self.calls.append(("mirror", path))
        if ("mirror", path) in self.failing:
            raise aiohttp.ClientConnectionError("connection reset")
        return self.mirror[path]


class RaisingComparer(PageComparer):
    def have_same_body(self, page_a, page_b):
        raise ComparisonFailed("broken")


class RecordingNotifier(DriftNotifier):
    def __init__(self, fail: bool = False):
        self.summaries = []
        self.fail = fail

    async def notify(self, summary):
        self.summaries.append(summary.model_copy())
        if self.fail:
            raise NotifyFailed("unexpected status code: 500")


def html(text: str) -> Page:
    return Page(body=f"<p>{text}</p>", content_type="text/html")


def top_urls(unsampled, sampled=()) -> TopUrls:
    return TopUrls(
        top_unsampled=[UrlHitCount(url=u, view_count=100) for u in unsampled],
        remaining_sampled=[UrlHitCount(url=u, view_count=1) for u in sampled],
    )


@pytest.mark.asyncio
class TestDriftChecker:
    """Test comparison accounting."""

    async def test_no_drift(self):
        pages = {"/a": html("a"), "/b": html("b")}
        notifier = RecordingNotifier()
        checker = DriftChecker(FakePageFetcher(pages, pages), PageComparer(), notifier)

        assert not await checker.check(top_urls(["/a"], ["/b"]))

        assert checker.summary == DriftSummary(pages_compared=2, drifts_detected=0, errors=0)
        assert notifier.summaries == []

    async def test_drift_notifies(self):
        live = {"/a": html("a"), "/b": html("b")}
        mirror = {"/a": html("a"), "/b": html("stale b")}
        notifier = RecordingNotifier()
        checker = DriftChecker(FakePageFetcher(live, mirror), PageComparer(), notifier)

        assert await checker.check(top_urls(["/a"], ["/b"]))

        assert notifier.summaries == [DriftSummary(pages_compared=2, drifts_detected=1, errors=0)]
        assert not checker.notify_failed

    async def test_fetch_errors_skip_url(self):
        """Test a failed fetch counts an error and no comparison."""
        pages = {"/a": html("a"), "/b": html("b"), "/c": html("c")}
        fetcher = FakePageFetcher(pages, pages, failing={("live", "/a"), ("mirror", "/b")})
        checker = DriftChecker(fetcher, PageComparer(), RecordingNotifier())

        assert not await checker.check(top_urls(["/a", "/b", "/c"]))

        assert checker.summary == DriftSummary(pages_compared=1, drifts_detected=0, errors=2)
        assert ("mirror", "/a") not in fetcher.calls

    async def test_comparison_errors_counted_as_compared(self):
        pages = {"/a": html("a")}
        checker = DriftChecker(FakePageFetcher(pages, pages), RaisingComparer(), RecordingNotifier())

        assert not await checker.check(top_urls(["/a"]))

        assert checker.summary == DriftSummary(pages_compared=1, drifts_detected=0, errors=1)

    async def test_notifier_failure_recorded(self):
        live = {"/a": html("a")}
        mirror = {"/a": html("b")}
        checker = DriftChecker(FakePageFetcher(live, mirror), PageComparer(), RecordingNotifier(fail=True))

        assert await checker.check(top_urls(["/a"]))
        assert checker.notify_failed

    async def test_summary_reset_between_runs(self):
        pages = {"/a": html("a")}
        checker = DriftChecker(FakePageFetcher(pages, pages), PageComparer(), RecordingNotifier())

        await checker.check(top_urls(["/a"]))
        await checker.check(top_urls(["/a"]))

        assert checker.summary.pages_compared == 1


def test_format_summary():
    text = format_summary(DriftSummary(pages_compared=200, drifts_detected=3, errors=1), "https://www.gov.uk")

    assert text.splitlines() == [
        "Drifts were detected between the live and mirror versions of pages on https://www.gov.uk",
        "Pages tested: 200",
        "Drifts detected: 3",
        "Errors encountered: 1",
    ]


def build_webhook_app(received: list, status: int) -> web.Application:
    async def hook(request):
        received.append((request.content_type, await request.json()))
        return web.Response(status=status, text="ok")

    app = web.Application()
    app.router.add_post("/hook", hook)
    return app


@pytest.fixture
def received():
    return []


@pytest_asyncio.fixture
async def webhook(received, request):
    status = getattr(request, "param", 200)
    server = TestServer(build_webhook_app(received, status))
    await server.start_server()
    yield server
    await server.close()


@pytest.mark.asyncio
class TestNotifiers:
    """Test drift notification delivery."""

    async def test_webhook(self, webhook, received):
        summary = DriftSummary(pages_compared=10, drifts_detected=2, errors=0)

        async with aiohttp.ClientSession() as session:
            notifier = WebhookDriftNotifier(str(webhook.make_url("/hook")), "https://www.gov.uk", session)
            await notifier.notify(summary)

        content_type, payload = received[0]
        assert content_type == "application/json"
        assert payload == {
            "text": format_summary(summary, "https://www.gov.uk"),
            "username": "GOV.UK mirror drift detection: https://www.gov.uk",
        }

    @pytest.mark.parametrize("webhook", [500], indirect=True)
    async def test_webhook_error_status(self, webhook):
        async with aiohttp.ClientSession() as session:
            notifier = WebhookDriftNotifier(str(webhook.make_url("/hook")), "https://www.gov.uk", session)
            with pytest.raises(NotifyFailed):
                await notifier.notify(DriftSummary(pages_compared=1, drifts_detected=1))

    async def test_webhook_unreachable(self):
        async with aiohttp.ClientSession() as session:
            notifier = WebhookDriftNotifier("http://unreachable.invalid/hook", "https://www.gov.uk", session)
            with pytest.raises(NotifyFailed):
                await notifier.notify(DriftSummary(pages_compared=1, drifts_detected=1))

    async def test_stdout(self, capsys):
        await StdoutDriftNotifier("https://www.gov.uk").notify(DriftSummary(pages_compared=5, drifts_detected=1))

        out = capsys.readouterr().out
        assert "Pages tested: 5" in out
        assert "Drifts detected: 1" in out
