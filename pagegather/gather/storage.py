"""Clearing site data and browser caches between runs."""

import logging
from typing import List, Optional

from ..lib.errors import ProtocolTimeoutError
from ..lib.url_utils import get_origin
from ..protocol.session import ProtocolSession

logger = logging.getLogger(__name__)

# Cookies are kept to preserve logins; local storage, IndexedDB and WebSQL
# are kept to preserve user data.
CLEARED_STORAGE_TYPES = (
    "file_systems",
    "shader_cache",
    "service_workers",
    "cache_storage",
)

IMPORTANT_STORAGE_TYPES = {
    "local_storage": "Local Storage",
    "indexeddb": "IndexedDB",
    "websql": "Web SQL",
}

CLEAR_DATA_TIMEOUT_WARNING = (
    "Clearing the origin data timed out. "
    "Try auditing this page again and file a bug if the issue persists."
)
CLEAR_CACHE_TIMEOUT_WARNING = (
    "Clearing the browser cache timed out. "
    "Try auditing this page again and file a bug if the issue persists."
)


async def clear_data_for_origin(session: ProtocolSession, url: str) -> List[str]:
    """Clear non-essential storage for the origin of ``url``.

    Returns:
        Warnings; a timed-out clear becomes a warning

    Raises:
        Any error other than a protocol timeout
    """
    origin = get_origin(url)
    warnings: List[str] = []

    logger.info(f"Cleaning origin data for {origin}")
    try:
        await session.send_command("Storage.clearDataForOrigin", {
            "origin": origin,
            "storageTypes": ",".join(CLEARED_STORAGE_TYPES),
        })
    except ProtocolTimeoutError:
        logger.warning("Clearing origin data timed out")
        warnings.append(CLEAR_DATA_TIMEOUT_WARNING)

    return warnings


async def clear_browser_caches(session: ProtocolSession) -> List[str]:
    """Clear the HTTP cache and disable it for the coming load.

    Returns:
        Warnings; a timed-out clear becomes a warning
    """
    warnings: List[str] = []

    logger.info("Cleaning browser cache")
    try:
        await session.send_command("Network.clearBrowserCache")
        # Toggle the cache off and on so a fresh load bypasses it
        await session.send_command("Network.setCacheDisabled", {"cacheDisabled": True})
        await session.send_command("Network.setCacheDisabled", {"cacheDisabled": False})
    except ProtocolTimeoutError:
        logger.warning("Clearing browser cache timed out")
        warnings.append(CLEAR_CACHE_TIMEOUT_WARNING)

    return warnings


async def get_important_storage_warning(session: ProtocolSession, url: str) -> Optional[str]:
    """Warn when storage that is never cleared holds data for the origin."""
    try:
        usage = await session.send_command("Storage.getUsageAndQuota", {"origin": get_origin(url)})
    except ProtocolTimeoutError:
        logger.warning("Reading storage usage timed out")
        return None

    locations = [
        IMPORTANT_STORAGE_TYPES[entry["storageType"]]
        for entry in usage.get("usageBreakdown", [])
        if entry.get("storageType") in IMPORTANT_STORAGE_TYPES and entry.get("usage", 0) > 0
    ]
    if not locations:
        return None

    return (
        "There may be stored data affecting loading performance in these locations: "
        f"{', '.join(locations)}. Audit this page in an incognito window to prevent those "
        "resources from affecting your scores."
    )
