"""Facts about the host browser and machine the run happens on."""

import logging
import re
from typing import List, Optional, Tuple

from ..lib.errors import GatherError
from ..models.config import FormFactor, Settings, ThrottlingMethod
from ..protocol.session import ProtocolSession

logger = logging.getLogger(__name__)

SLOW_CPU_BENCHMARK_INDEX_THRESHOLD = 1000
DEFAULT_CPU_SLOWDOWN_MULTIPLIER = 4
SLOW_HOST_WARNING_CHANNELS = frozenset({"cli", "python"})

SLOW_HOST_CPU_WARNING = (
    "The tested device appears to have a slower CPU than expected. This can negatively "
    "affect the results. Learn more about calibrating the appropriate CPU slowdown multiplier."
)

_MILESTONE_PATTERN = re.compile(r"Chrome/(\d+)")

# Tight loop of string and array work, timed in the page. Returns
# iterations per second, roughly comparable across machines.
BENCHMARK_EXPRESSION = """
(() => {
  const start = Date.now();
  let iterations = 0;
  while (Date.now() - start < 500) {
    let s = '';
    for (let j = 0; j < 10000; j++) s += 'a';
    const arr = [];
    for (let j = 0; j < 1000; j++) arr.push(j);
    arr.sort((a, b) => b - a);
    iterations++;
  }
  return Math.round(iterations / ((Date.now() - start) / 1000) * 100);
})()
"""


async def get_browser_version(session: ProtocolSession) -> Tuple[str, str, int]:
    """User agent, product and Chrome milestone of the connected browser.

    Returns:
        Tuple of (user_agent, product, milestone). Milestone is 0 when the
        product string cannot be parsed.
    """
    response = await session.send_command("Browser.getVersion")
    product = response.get("product", "")
    match = _MILESTONE_PATTERN.search(product)
    milestone = int(match.group(1)) if match else 0
    return response.get("userAgent", ""), product, milestone


def get_host_form_factor(user_agent: str) -> FormFactor:
    if "Android" in user_agent or "Mobile" in user_agent:
        return FormFactor.MOBILE
    return FormFactor.DESKTOP


async def get_benchmark_index(driver) -> Optional[float]:
    """Rough CPU speed of the host, measured in the page."""
    try:
        value = await driver.evaluate(BENCHMARK_EXPRESSION)
    except GatherError as e:
        logger.warning(f"Could not compute benchmark index: {e}")
        return None
    return float(value) if value is not None else None


def get_slow_host_cpu_warning(settings: Settings, benchmark_index: Optional[float]) -> Optional[str]:
    """Warn when simulated throttling runs on a host too slow for the default multiplier."""
    if settings.channel not in SLOW_HOST_WARNING_CHANNELS:
        return None
    if settings.throttling_method != ThrottlingMethod.SIMULATE:
        return None
    if settings.throttling.cpu_slowdown_multiplier != DEFAULT_CPU_SLOWDOWN_MULTIPLIER:
        return None
    if benchmark_index is None or benchmark_index >= SLOW_CPU_BENCHMARK_INDEX_THRESHOLD:
        return None
    return SLOW_HOST_CPU_WARNING


def get_environment_warnings(settings: Settings, benchmark_index: Optional[float]) -> List[str]:
    warning = get_slow_host_cpu_warning(settings, benchmark_index)
    return [warning] if warning else []
