"""Loading credential lists from files and URLs."""

import asyncio
import json
from pathlib import Path

import httpx

from keyrelay.domain.models.errors import SourceUnavailableError


def parse_key_text(text: str) -> list[str]:
    """Parse a key source body.

    The body is tried as a JSON array of strings first and falls back to one
    key per line. Blank lines are dropped and surrounding whitespace trimmed.
    """
    try:
        data = json.loads(text)
    except ValueError:
        data = None

    if isinstance(data, list):
        return [str(item).strip() for item in data if str(item).strip()]

    return [line.strip() for line in text.splitlines() if line.strip()]


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


async def read_key_source(
    source: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> str:
    """Fetch a remote key source or read a local one.

    Args:
        source: ``http(s)://`` URL or filesystem path.
        client: Optional shared httpx client (a temporary one is used otherwise).
        timeout: Request timeout for remote sources.

    Returns:
        The raw body text.

    Raises:
        SourceUnavailableError: If the fetch or read fails.
    """
    if is_url(source):
        try:
            if client is not None:
                response = await client.get(source, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as temp_client:
                    response = await temp_client.get(source)
            response.raise_for_status()
            return response.text
        except httpx.HTTPError as e:
            raise SourceUnavailableError(
                f"Failed to fetch keys from {source}: {e}",
                details={"source": source},
            ) from e

    path = Path(source)
    try:
        return await asyncio.to_thread(path.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceUnavailableError(
            f"Failed to read keys file {path}: {e}",
            details={"source": str(path)},
        ) from e
