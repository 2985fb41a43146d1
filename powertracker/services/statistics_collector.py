# powertracker/services/statistics_collector.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from powertracker.errors import ConfigurationError, ProtocolError, UpstreamError
from powertracker.models.messages import StatisticsRequest, StatisticsResponse
from powertracker.models.report import HOURS_IN_A_DAY, UsageReport, hour_headers
from powertracker.services.ha_session import HASession


def utc_midnight(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def format_timestamp(moment: datetime) -> str:
    """ISO 8601 in UTC with millisecond precision, e.g. 2024-03-01T00:00:00.000Z."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def day_window(row: int, now: datetime) -> Tuple[str, str]:
    """Return (start, end) for the request filling ``row`` of the matrix.

    The window opens at midnight ``row + 1`` days back and always closes at
    midnight today; only its first 24 hourly buckets are used.
    """
    offset = timedelta(hours=(row + 1) * HOURS_IN_A_DAY)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    start = utc_midnight(now - offset)
    end = utc_midnight(now)
    return format_timestamp(start), format_timestamp(end)


def compute_averages(rows: Sequence[Sequence[float]], days: int) -> List[float]:
    """Per-hour column sums divided by the configured number of days."""
    averages = []
    for hour in range(HOURS_IN_A_DAY):
        total = 0.0
        for row in rows:
            total += row[hour]
        averages.append(total / days)
    return averages


def build_report(rows: List[List[float]], days: int) -> UsageReport:
    return UsageReport(rows=rows, averages=compute_averages(rows, days), headers=hour_headers())


class StatisticsCollector:
    """Fetch one day of hourly energy change per request over a live session."""

    def __init__(self, session: HASession, log):
        self.session = session
        self.log = log

    # ------------------------------------------------------------------
    def collect(
        self,
        days: int,
        sensor_id: str,
        now: Optional[datetime] = None,
    ) -> List[List[float]]:
        if not sensor_id:
            raise ConfigurationError("sensor_id is required")
        if days < 1:
            raise ConfigurationError(f"days must be at least 1, got {days}")

        now = now or datetime.now(timezone.utc)
        rows: List[List[float]] = []
        for row in range(days):
            rows.append(self._fetch_day(row, sensor_id, now))

        self.log.info("collected %d day(s) of hourly statistics for %s", len(rows), sensor_id)
        return rows

    def collect_report(
        self,
        days: int,
        sensor_id: str,
        now: Optional[datetime] = None,
    ) -> UsageReport:
        return build_report(self.collect(days, sensor_id, now=now), days)

    # ------------------------------------------------------------------
    def _fetch_day(self, row: int, sensor_id: str, now: datetime) -> List[float]:
        message_id = self.session.next_message_id()
        start, end = day_window(row, now)
        self.log.debug("request %d: %s statistics %s -> %s", message_id, sensor_id, start, end)

        request = StatisticsRequest(
            id=message_id,
            start_time=start,
            end_time=end,
            statistic_ids=[sensor_id],
        )
        self.session.send(request.to_payload())

        response = self.session.read_message(StatisticsResponse.from_payload)
        if not response.success:
            error = response.error
            raise UpstreamError(
                f"api response error: {error if error else 'request failed'}",
                code=error.code if error else None,
                detail=error.message if error else None,
            )
        if response.id is not None and response.id != message_id:
            raise ProtocolError(
                f"response id {response.id} does not match request id {message_id}"
            )

        buckets = response.buckets_for(sensor_id)
        if not buckets:
            raise UpstreamError(f"no results returned - is your sensor_id '{sensor_id}' correct?")
        if len(buckets) < HOURS_IN_A_DAY:
            raise ProtocolError(
                f"expected {HOURS_IN_A_DAY} hourly buckets for '{sensor_id}' "
                f"starting {start}, got {len(buckets)}"
            )

        return [bucket.change for bucket in buckets[:HOURS_IN_A_DAY]]
