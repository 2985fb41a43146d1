from __future__ import annotations

from dataclasses import dataclass, field

HOURS_IN_A_DAY = 24


def hour_headers() -> list[str]:
    return [str(hour) for hour in range(HOURS_IN_A_DAY)]


@dataclass
class UsageReport:
    # Row 0 is the most recent complete day.
    rows: list[list[float]]
    averages: list[float]
    headers: list[str] = field(default_factory=hour_headers)

    @property
    def days(self) -> int:
        return len(self.rows)
