"""Device emulation and network/CPU throttling over the protocol."""

import asyncio
import logging
from typing import Any, Dict

from ..models.config import FormFactor, Settings, ThrottlingMethod, ThrottlingSettings
from ..protocol.session import ProtocolSession

logger = logging.getLogger(__name__)

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 11; moto g power (2022)) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Mobile Safari/537.36"
)
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
)

SCREEN_EMULATION = {
    FormFactor.MOBILE: {
        "mobile": True,
        "width": 412,
        "height": 823,
        "deviceScaleFactor": 1.75,
    },
    FormFactor.DESKTOP: {
        "mobile": False,
        "width": 1350,
        "height": 940,
        "deviceScaleFactor": 1,
    },
}

NO_THROTTLING_METRICS = {
    "latency": 0,
    "downloadThroughput": 0,
    "uploadThroughput": 0,
    "offline": False,
}

NO_CPU_THROTTLE_METRICS = {"rate": 1}


def _network_conditions(throttling: ThrottlingSettings) -> Dict[str, Any]:
    # The protocol expects throughput in bytes per second
    return {
        "offline": False,
        "latency": throttling.request_latency_ms or 0,
        "downloadThroughput": int((throttling.download_throughput_kbps or 0) * 1024 / 8),
        "uploadThroughput": int((throttling.upload_throughput_kbps or 0) * 1024 / 8),
    }


async def emulate(session: ProtocolSession, settings: Settings) -> None:
    """Apply the user agent and screen metrics for the configured form factor."""
    user_agent = settings.emulated_user_agent
    if user_agent is None:
        user_agent = MOBILE_USER_AGENT if settings.form_factor == FormFactor.MOBILE else DESKTOP_USER_AGENT

    # Network.enable must be called for UA overriding to work
    await session.send_command("Network.enable")
    await session.send_command("Network.setUserAgentOverride", {"userAgent": user_agent})

    metrics = SCREEN_EMULATION[FormFactor(settings.form_factor)]
    await session.send_command("Emulation.setDeviceMetricsOverride", dict(metrics))
    await session.send_command("Emulation.setTouchEmulationEnabled", {"enabled": metrics["mobile"]})


async def throttle(session: ProtocolSession, settings: Settings) -> None:
    """Apply network and CPU throttling when the throttling method is ``devtools``."""
    if settings.throttling_method != ThrottlingMethod.DEVTOOLS:
        await clear_throttling(session)
        return

    await asyncio.gather(
        session.send_command("Network.emulateNetworkConditions", _network_conditions(settings.throttling)),
        session.send_command(
            "Emulation.setCPUThrottlingRate",
            {"rate": settings.throttling.cpu_slowdown_multiplier}
        ),
    )
    logger.debug(f"Applied devtools throttling: {settings.throttling}")


async def clear_throttling(session: ProtocolSession) -> None:
    """Remove any network and CPU throttling."""
    await asyncio.gather(
        session.send_command("Network.emulateNetworkConditions", dict(NO_THROTTLING_METRICS)),
        session.send_command("Emulation.setCPUThrottlingRate", dict(NO_CPU_THROTTLE_METRICS)),
    )
