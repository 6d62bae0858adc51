from datetime import UTC, datetime, timedelta, timezone

from langchain_core.tools import BaseTool, tool


@tool
def current_datetime(utc_offset_hours: float | None = None) -> str:
    """Return the current date and time in ISO 8601 format.

    Without an offset the local time zone of the machine is used.
    """
    now = datetime.now(UTC)
    if utc_offset_hours is None:
        return now.astimezone().isoformat(timespec="seconds")
    return now.astimezone(timezone(timedelta(hours=utc_offset_hours))).isoformat(
        timespec="seconds"
    )


BUILTIN_TOOLS: dict[str, BaseTool] = {t.name: t for t in [current_datetime]}
