"""Wall clock used for every expiry and deadline check."""

from __future__ import annotations

from datetime import UTC, datetime


class SystemClock:
    """Current UTC time as unix epoch milliseconds."""

    def now_ms(self) -> int:
        return int(datetime.now(UTC).timestamp() * 1000)


def ms_to_iso(timestamp_ms: int | None) -> str | None:
    """Render an epoch-ms timestamp as ISO 8601 with a Z suffix."""
    if timestamp_ms is None:
        return None
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
