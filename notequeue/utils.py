from datetime import datetime, timezone
import re
from urllib.parse import urlparse, parse_qs

_YT_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo (sqlite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp_progress(value) -> int:
    try:
        progress = int(value)
    except (ValueError, TypeError):
        return 0
    return max(0, min(100, progress))


def extract_youtube_video_id(url: str) -> str | None:
    """
    Supports:
    - https://www.youtube.com/watch?v=VIDEOID
    - https://youtu.be/VIDEOID
    - https://www.youtube.com/shorts/VIDEOID
    - https://www.youtube.com/embed/VIDEOID
    """
    try:
        u = urlparse(url)
    except ValueError:
        return None

    host = (u.netloc or "").lower()
    path = (u.path or "").strip("/")

    if "youtu.be" in host:
        vid = path.split("/")[0] if path else ""
        return vid if _YT_ID_RE.match(vid) else None

    if "youtube.com" in host:
        if path == "watch":
            q = parse_qs(u.query or "")
            vid = (q.get("v", [""])[0]).strip()
            return vid if _YT_ID_RE.match(vid) else None

        for prefix in ("shorts/", "embed/"):
            if path.startswith(prefix):
                parts = path.split("/")
                vid = parts[1] if len(parts) > 1 else ""
                return vid if _YT_ID_RE.match(vid) else None

    return None
