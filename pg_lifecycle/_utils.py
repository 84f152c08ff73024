import gzip
import logging
import re
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger("pg-lifecycle")

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_TIMESTAMP_RE = re.compile(r"(\d{8})(?:_(\d{6}))?")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Render a timestamp the way artifact names embed it."""
    moment = moment or utc_now()
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_embedded_timestamp(name: str) -> Optional[datetime]:
    """Extract the first embedded ``YYYYmmdd[_HHMMSS]`` stamp from a name.

    Returns None when the name carries no parseable date. A date without a
    time component is taken as midnight UTC.
    """
    match = _TIMESTAMP_RE.search(name)
    if not match:
        return None
    day, clock = match.group(1), match.group(2) or "000000"
    try:
        return datetime.strptime(f"{day}_{clock}", TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def verify_gzip_stream(file_path: Path, chunk_size: int = 64 * 1024) -> bool:
    """Check a gzip file by decompressing it in chunks and discarding output.

    Args:
        file_path: Path to the compressed file

    Returns:
        True if the whole stream decompresses and its CRC matches
    """
    try:
        with gzip.open(file_path, "rb") as f:
            for _ in iter(lambda: f.read(chunk_size), b""):
                pass
    except (OSError, EOFError, zlib.error) as e:
        logger.debug(f"Gzip verification failed for {file_path}: {e}")
        return False
    return True


def human_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024 or unit == "G":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}G"


def quote_ident(name: str) -> str:
    """Validate a plain SQL identifier so it can be embedded in a query."""
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name or ""):
        raise ValueError(f"Invalid table name: {name!r}")
    return name
