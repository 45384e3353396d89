"""Notifications sent when drift is detected."""

from abc import ABC, abstractmethod
import aiohttp
import click
import structlog

from mirrorer.models import DriftSummary

logger = structlog.get_logger()


class NotifyFailed(Exception):
    """A drift notification could not be delivered."""


def format_summary(summary: DriftSummary, mirror_site: str) -> str:
    """Human readable drift summary, one fact per line."""
    return "\n".join(
        [
            f"Drifts were detected between the live and mirror versions of pages on {mirror_site}",
            f"Pages tested: {summary.pages_compared}",
            f"Drifts detected: {summary.drifts_detected}",
            f"Errors encountered: {summary.errors}",
        ]
    )


class DriftNotifier(ABC):
    """Destination for drift summaries."""

    @abstractmethod
    async def notify(self, summary: DriftSummary) -> None:
        """
        Report a drift summary.

        Raises:
            NotifyFailed: If the summary could not be delivered
        """


class WebhookDriftNotifier(DriftNotifier):
    """Posts drift summaries to a Slack-compatible incoming webhook."""

    def __init__(self, webhook_url: str, mirror_site: str, session: aiohttp.ClientSession):
        self.webhook_url = webhook_url
        self.mirror_site = mirror_site
        self.session = session

    async def notify(self, summary: DriftSummary) -> None:
        payload = {
            "text": format_summary(summary, self.mirror_site),
            "username": f"GOV.UK mirror drift detection: {self.mirror_site}",
        }

        try:
            async with self.session.post(self.webhook_url, json=payload) as response:
                if response.status != 200:
                    raise NotifyFailed(f"unexpected status code: {response.status}")
        except (aiohttp.ClientError, TimeoutError) as e:
            raise NotifyFailed(f"failed to post drift summary: {e}") from e

        logger.info("drift_notification_sent", webhook=self.webhook_url)


class StdoutDriftNotifier(DriftNotifier):
    """Writes drift summaries to standard output."""

    def __init__(self, mirror_site: str = "GOV.UK"):
        self.mirror_site = mirror_site

    async def notify(self, summary: DriftSummary) -> None:
        click.echo(format_summary(summary, self.mirror_site))
