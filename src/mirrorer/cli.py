"""CLI interface for mirrorer."""

import asyncio
import logging
import random
import sys
import click
import structlog

from mirrorer import __version__
from mirrorer.config import ConfigError, DriftCheckConfig, MirrorConfig
from mirrorer.runner import run_drift_check, run_mirror, run_status_check
from mirrorer.top_urls import AthenaQueryFailed
from mirrorer.validation import DomainUnreachable

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog once for the whole process."""
    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    envvar="LOG_LEVEL",
    default="INFO",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Log threshold (default: INFO)",
)
@click.option(
    "--log-format",
    envvar="LOG_FORMAT",
    default="console",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Log rendering (default: console)",
)
def main(log_level: str, log_format: str):
    """
    mirrorer - keeps a static mirror of a website.

    All settings are read from environment variables.
    """
    configure_logging(log_level, log_format.lower())


@main.command()
@click.option("--progress", is_flag=True, help="Show a progress bar of stored files")
def crawl(progress: bool):
    """
    Crawl SITE into the local mirror and upload it to S3_BUCKET_NAME.

    Examples:

        SITE=https://www.gov.uk/sitemap.xml ALLOWED_DOMAINS=www.gov.uk mirrorer crawl

        SKIP_VALIDATION=true MIRROR_DIR=/tmp/mirror mirrorer crawl --progress
    """
    try:
        config = MirrorConfig.from_env()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    try:
        metrics = asyncio.run(run_mirror(config, progress=progress))
    except DomainUnreachable as e:
        click.echo(f"Error: configuration validation failed: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nCrawl interrupted by user")
        sys.exit(130)

    click.echo(
        f"Mirrored {int(metrics.value('files_downloaded_total'))} files "
        f"({int(metrics.value('http_errors_total'))} HTTP errors, "
        f"{int(metrics.value('files_uploaded_total'))} uploaded)"
    )


@main.command("drift-check")
@click.option("--seed", type=int, help="Seed for the random sample (default: RANDOM_SEED or random)")
def drift_check(seed: int):
    """
    Compare popular pages between the live site and the mirror.

    Exits 1 when drift is detected or the notification could not be sent.
    """
    try:
        config = DriftCheckConfig.from_env()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    rng = random.Random(seed if seed is not None else config.random_seed)

    try:
        exit_code = asyncio.run(run_drift_check(config, rng))
    except (AthenaQueryFailed, ValueError) as e:
        click.echo(f"Error generating top urls: {e}", err=True)
        sys.exit(1)

    sys.exit(exit_code)


@main.command("status-check")
def status_check():
    """Serve mirror availability and freshness metrics on STATUS_CHECK_PORT."""
    try:
        config = MirrorConfig.from_env()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    try:
        asyncio.run(run_status_check(config))
    except KeyboardInterrupt:
        click.echo("\nStatus check stopped")


@main.command()
def version():
    """Print the mirrorer version."""
    click.echo(f"mirrorer {__version__}")


if __name__ == "__main__":
    main()
