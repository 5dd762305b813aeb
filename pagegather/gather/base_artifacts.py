"""Base artifacts every run produces, and the final artifact bundle."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..lib.errors import GatherError
from ..models.artifacts import ArtifactBundle, BaseArtifacts, TimingEntry, URLArtifact
from ..models.config import GatherContext, GatherMode, ResolvedConfig
from . import environment

logger = logging.getLogger(__name__)

REQUIRED_URL_FIELDS = ("initial_url", "requested_url", "main_document_url", "final_url")


async def get_base_artifacts(config: ResolvedConfig, driver, gather_mode: GatherMode) -> BaseArtifacts:
    """Collect the environment facts of a run. URL fields are left empty.

    Args:
        config: Resolved config of the run
        driver: Connected Driver
        gather_mode: Mode the run gathers in

    Returns:
        BaseArtifacts with every URL field set to ``""``
    """
    user_agent, product, milestone = await environment.get_browser_version(driver.default_session)
    benchmark_index = await environment.get_benchmark_index(driver)
    logger.info(f"Host browser {product} (milestone {milestone}), benchmark index {benchmark_index}")

    return BaseArtifacts(
        settings=config.settings,
        gather_context=GatherContext(gather_mode=gather_mode),
        url=URLArtifact(),
        host_user_agent=user_agent,
        host_product=product,
        host_form_factor=environment.get_host_form_factor(user_agent).value,
        benchmark_index=benchmark_index,
    )


def _dedupe_warnings(warnings: List[str]) -> List[str]:
    seen = set()
    unique = []
    for warning in warnings:
        if warning in seen:
            continue
        seen.add(warning)
        unique.append(warning)
    return unique


def finalize_artifacts(base_artifacts: BaseArtifacts, gathered: Dict[str, Any]) -> ArtifactBundle:
    """Merge base artifacts with what the navigations gathered.

    Args:
        base_artifacts: Output of ``get_base_artifacts``, URLs filled in by the runner
        gathered: Dict with ``artifacts``, ``devtools_logs``, ``traces``,
            ``run_warnings`` and ``page_load_error`` keys, all optional

    Returns:
        The artifact bundle handed to the audit stage

    Raises:
        GatherError: If a required URL was never set and no page-load error explains why
    """
    page_load_error = gathered.get("page_load_error") or base_artifacts.page_load_error

    if page_load_error is None:
        for field in REQUIRED_URL_FIELDS:
            if not getattr(base_artifacts.url, field):
                raise GatherError(
                    f"Runner did not set {field}",
                    error_code="incomplete_artifacts",
                    details={"field": field}
                )

    warnings = list(base_artifacts.run_warnings) + list(gathered.get("run_warnings", []))
    warnings.extend(environment.get_environment_warnings(base_artifacts.settings, base_artifacts.benchmark_index))

    now = datetime.now(timezone.utc)
    timing = list(base_artifacts.timing)
    timing.append(TimingEntry(
        name="pagegather:gather",
        start_time=base_artifacts.fetch_time.timestamp(),
        duration_ms=(now - base_artifacts.fetch_time).total_seconds() * 1000,
    ))

    base_fields = base_artifacts.model_dump(exclude={"run_warnings", "page_load_error", "timing", "url", "settings"})
    return ArtifactBundle(
        **base_fields,
        settings=base_artifacts.settings,
        url=base_artifacts.url,
        run_warnings=_dedupe_warnings(warnings),
        page_load_error=page_load_error,
        timing=timing,
        artifacts=dict(gathered.get("artifacts", {})),
        devtools_logs=dict(gathered.get("devtools_logs", {})),
        traces=dict(gathered.get("traces", {})),
    )
