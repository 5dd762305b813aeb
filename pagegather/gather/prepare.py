"""Preparing the target for a run and for each navigation."""

import logging
from typing import Any, Dict, List, Union

from ..models.config import NavigationDefinition, Settings
from ..protocol.session import ProtocolSession
from . import emulation, storage

logger = logging.getLogger(__name__)


async def enable_dialog_dismissal(session: ProtocolSession) -> None:
    """Accept JavaScript dialogs so they never block a load."""
    async def on_dialog(params: Dict[str, Any]) -> None:
        logger.warning(f"Dismissing javascript {params.get('type', 'dialog')}: {params.get('message', '')}")
        await session.send_command("Page.handleJavaScriptDialog", {
            "accept": True,
            "promptText": "pagegather prompt response",
        })

    session.on("Page.javascriptDialogOpening", on_dialog)


async def prepare_network(session: ProtocolSession, settings: Settings, navigation: NavigationDefinition) -> None:
    """Apply blocked URL patterns and extra headers."""
    blocked = list(navigation.blocked_url_patterns) + list(settings.blocked_url_patterns)
    await session.send_command("Network.setBlockedURLs", {"urls": blocked})

    if settings.extra_headers:
        await session.send_command("Network.setExtraHTTPHeaders", {"headers": dict(settings.extra_headers)})


async def prepare_throttling_and_network(
    session: ProtocolSession,
    settings: Settings,
    navigation: NavigationDefinition
) -> None:
    """Throttle (or unthrottle) and configure the network for one navigation."""
    if navigation.disable_throttling:
        await emulation.clear_throttling(session)
    else:
        await emulation.throttle(session, settings)

    await prepare_network(session, settings, navigation)


async def prepare_target_for_navigation_mode(session: ProtocolSession, settings: Settings) -> None:
    """One-time preparation before the first navigation of a run."""
    await emulation.emulate(session, settings)

    # Service workers must be able to serve the page like they would for a user
    await session.send_command("Network.setBypassServiceWorker", {"bypass": False})

    await session.send_command("Page.enable")
    await enable_dialog_dismissal(session)
    logger.debug("Target prepared for navigation mode")


async def prepare_target_for_individual_navigation(
    session: ProtocolSession,
    settings: Settings,
    navigation: NavigationDefinition,
    requestor: Union[str, Any]
) -> List[str]:
    """Per-navigation preparation: storage reset, throttling and network setup.

    Storage is only reset for URL requestors; a callable requestor drives the
    page itself and may depend on existing state.

    Returns:
        Warnings collected while preparing
    """
    warnings: List[str] = []

    should_reset_storage = (
        not settings.disable_storage_reset
        and not navigation.disable_storage_reset
        and isinstance(requestor, str)
    )
    if should_reset_storage:
        storage_warning = await storage.get_important_storage_warning(session, requestor)
        if storage_warning:
            warnings.append(storage_warning)

        warnings.extend(await storage.clear_data_for_origin(session, requestor))
        warnings.extend(await storage.clear_browser_caches(session))

    await prepare_throttling_and_network(session, settings, navigation)
    return warnings
