import re
from datetime import date, timedelta
from typing import Optional

_TAG_RE = re.compile(r"<[^>]*>")


def strip_tags(content: str) -> str:
    """Drop markup so a rich-text body can be measured or previewed."""
    return _TAG_RE.sub("", content).strip()


def truncate_content(content: str, max_length: int = 50) -> str:
    """Plain-text preview of a message body."""
    text = strip_tags(content)
    if len(text) <= max_length:
        return text
    return text[:max_length].strip() + "..."


def format_day_label(day: date, today: Optional[date] = None) -> str:
    """Header for a day bucket in a message thread.

    Today / Yesterday, the weekday name within the last week, otherwise a
    short date with the year only when it differs from the current one.
    """
    today = today or date.today()
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    if timedelta(0) < today - day < timedelta(days=7):
        return day.strftime("%A")
    label = f"{day.strftime('%b')} {day.day}"
    if day.year != today.year:
        label += f", {day.year}"
    return label
