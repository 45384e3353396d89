"""Selection of the most viewed URLs to check for drift."""

import asyncio
import csv
import io
import random
from datetime import date, timedelta
from typing import Any, Optional
from urllib.parse import urlsplit
import structlog

from mirrorer.config import DriftCheckConfig
from mirrorer.models import TopUrls, UrlHitCount

logger = structlog.get_logger()

TOP_URLS_QUERY = """
SELECT
    url, count(1) as "count"
FROM
    {table}
WHERE
    date = ?
    AND month = ?
    AND year = ?
    AND url NOT LIKE '%/assets/%'
    AND url NOT LIKE '/api/%'
    AND url NOT LIKE '/search/%'
    AND status >= 200 AND status < 300
GROUP BY
    url
ORDER BY
    "count" DESC
LIMIT 1000
"""

RUNNING_STATES = frozenset({"QUEUED", "RUNNING"})


def new_top_urls(
    urls: list[UrlHitCount],
    number_unsampled: int,
    number_to_sample: int,
    rng: random.Random,
) -> TopUrls:
    """
    Pick the top URLs by views plus a random sample of the rest.

    Args:
        urls: URLs with their view counts, in any order
        number_unsampled: How many of the most viewed URLs to always include
        number_to_sample: How many URLs to sample from the remainder
        rng: Random source, seed it for reproducible samples

    Returns:
        TopUrls with the top slice sorted by views descending

    Raises:
        ValueError: If there are not enough URLs for both slices
    """
    total = len(urls)
    if total < number_unsampled:
        raise ValueError(f"requested {number_unsampled} unsampled, but there are only {total} top urls")

    available = total - number_unsampled
    if available < number_to_sample:
        raise ValueError(
            f"requested {number_to_sample} sampled, but there are only {available} urls "
            f"available to sample once the top {number_unsampled} are removed"
        )

    ordered = sorted(urls, key=lambda u: u.view_count, reverse=True)
    remainder = ordered[number_unsampled:]
    rng.shuffle(remainder)

    return TopUrls(
        top_unsampled=ordered[:number_unsampled],
        remaining_sampled=remainder[:number_to_sample],
    )


def csv_rows_to_url_hit_counts(rows: list[list[str]]) -> list[UrlHitCount]:
    """Convert query result rows, header first, into hit counts."""
    hit_counts = []
    for row in rows[1:]:
        if len(row) < 2:
            logger.warning("short_csv_row", row=row)
            continue

        url, count = row[0], row[1]
        try:
            urlsplit(url)
        except ValueError:
            logger.warning("unparseable_url", url=url)
            continue

        try:
            view_count = int(count)
        except ValueError:
            logger.warning("unparseable_view_count", url=url, count=count)
            continue

        if view_count < 0:
            logger.warning("negative_view_count", url=url, count=count)
            continue

        hit_counts.append(UrlHitCount(url=url, view_count=view_count))

    return hit_counts


class AthenaQueryFailed(Exception):
    """The top URLs query ended in a state other than SUCCEEDED."""

    def __init__(self, state: str, query_execution_id: str):
        self.state = state
        self.query_execution_id = query_execution_id
        super().__init__(
            f"The athena query with Query Execution ID {query_execution_id} to generate top "
            f"results did not succeed. Query ended in {state} state"
        )


class AthenaTopUrlsClient:
    """Gets yesterday's most viewed URLs from the CDN logs in Athena."""

    def __init__(
        self,
        config: DriftCheckConfig,
        athena_client: Any,
        s3_client: Any,
        poll_interval: float = 0.5,
    ):
        """
        Args:
            config: Drift-check configuration
            athena_client: An open aioboto3 Athena client
            s3_client: An open aioboto3 S3 client
            poll_interval: Seconds between query status checks
        """
        self.config = config
        self.athena = athena_client
        self.s3 = s3_client
        self.poll_interval = poll_interval

    async def get_top_urls(self, rng: random.Random, day: Optional[date] = None) -> TopUrls:
        """
        Run the query and sample its results.

        Args:
            rng: Random source for the sample
            day: Day to query, yesterday if None

        Raises:
            AthenaQueryFailed: If the query fails or is cancelled
            ValueError: If the query returned too few URLs
        """
        day = day or date.today() - timedelta(days=1)
        query_execution_id = await self.start_query(day)
        bucket, key = await self.wait_for_query(query_execution_id)
        rows = await self.read_results(bucket, key)

        hit_counts = csv_rows_to_url_hit_counts(rows)
        logger.info("top_urls_loaded", urls=len(hit_counts))

        return new_top_urls(
            hit_counts,
            self.config.compare_top_unsampled_count,
            self.config.compare_remaining_sampled_count,
            rng,
        )

    async def start_query(self, day: date) -> str:
        """Start the query for a day's hit counts and return its execution id."""
        params: dict[str, Any] = {
            "QueryString": TOP_URLS_QUERY.format(table=self.config.athena_table),
            "ExecutionParameters": [str(day.day), str(day.month), str(day.year)],
        }
        if self.config.athena_workgroup:
            params["WorkGroup"] = self.config.athena_workgroup

        logger.info("athena_query_starting", day=day.isoformat())
        response = await self.athena.start_query_execution(**params)
        return response["QueryExecutionId"]

    async def wait_for_query(self, query_execution_id: str) -> tuple[str, str]:
        """
        Poll until the query finishes.

        Returns:
            (bucket, key) of the CSV results

        Raises:
            AthenaQueryFailed: If the query did not succeed
        """
        while True:
            response = await self.athena.get_query_execution(QueryExecutionId=query_execution_id)
            execution = response["QueryExecution"]
            state = execution["Status"]["State"]
            logger.info("athena_query_state", state=state, query_execution_id=query_execution_id)

            if state not in RUNNING_STATES:
                break
            await asyncio.sleep(self.poll_interval)

        if state != "SUCCEEDED":
            logger.error("athena_query_failed", state=state, query_execution_id=query_execution_id)
            raise AthenaQueryFailed(state, query_execution_id)

        output_location = execution["ResultConfiguration"]["OutputLocation"]
        logger.info("athena_query_succeeded", output=output_location)

        parts = urlsplit(output_location)
        return parts.netloc, parts.path.lstrip("/")

    async def read_results(self, bucket: str, key: str) -> list[list[str]]:
        """Download and parse the query's CSV output."""
        response = await self.s3.get_object(Bucket=bucket, Key=key)
        async with response["Body"] as stream:
            content = await stream.read()

        rows = list(csv.reader(io.StringIO(content.decode("utf-8"))))
        logger.info("athena_results_read", bucket=bucket, key=key, rows=len(rows))
        return rows
