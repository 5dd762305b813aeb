"""Navigation-mode gather runner.

Takes the browser through one or more page loads. Every navigation runs the
same strictly ordered phases::

    setup -> start_instrumentation -> start_sensitive_instrumentation
    -> navigate -> stop_sensitive_instrumentation -> stop_instrumentation
    -> collect artifacts -> cleanup

The devtools log and trace are always collected, even when the config does
not ask for them, so a failed page load can be classified from its network
records and diagnosed from the retained logs.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from playwright.async_api import Page
from pydantic import BaseModel, ConfigDict, Field

from ..computed.cache import ComputedArtifactCache
from ..computed.network_records import NetworkRecords
from ..config.constants import DEVTOOLS_LOG_SYMBOL, TRACE_SYMBOL
from ..config.resolver import initialize_config
from ..lib.errors import GatherError, NavigationError
from ..lib.navigation_error import get_page_load_error
from ..lib.url_utils import normalize_url
from ..models.artifacts import BaseArtifacts, GatherResult, URLArtifact
from ..models.config import (
    ArtifactDefinition,
    CollectorDefinition,
    GatherMode,
    LoadFailureMode,
    NavigationDefinition,
    ResolvedConfig,
)
from . import emulation, prepare, storage
from .base_artifacts import finalize_artifacts, get_base_artifacts
from .browser import DEFAULT_HOSTNAME, DEFAULT_PORT, BrowserConnection
from .collectors import DevtoolsLog, Trace
from .driver import Driver
from .navigation import NavigationOptions, Requestor, WaitCondition, goto_url
from .runner_helpers import (
    Phase,
    PhaseState,
    await_artifacts,
    collect_phase_artifacts,
    get_empty_artifact_state,
)

logger = logging.getLogger(__name__)

PAGE_LOAD_ERROR_PREFIX = "pageLoadError-"

DIAGNOSTIC_COLLECTORS = {
    DEVTOOLS_LOG_SYMBOL: DevtoolsLog,
    TRACE_SYMBOL: Trace,
}


class NavigationContext:
    """State shared by the phases of one navigation."""

    def __init__(
        self,
        driver: Driver,
        config: ResolvedConfig,
        navigation: NavigationDefinition,
        requestor: Requestor,
        base_artifacts: BaseArtifacts,
        computed_cache: ComputedArtifactCache
    ):
        self.driver = driver
        self.config = config
        self.navigation = navigation
        self.requestor = requestor
        self.base_artifacts = base_artifacts
        self.computed_cache = computed_cache


class NavigateOutcome(BaseModel):
    """Result of the navigate phase. ``navigation_error`` is set on a soft failure."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    requested_url: str
    main_document_url: str
    navigation_error: Optional[NavigationError] = None
    warnings: List[str] = Field(default_factory=list)


class NavigationOutput(BaseModel):
    """What one navigation contributes to the artifact bundle."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    artifacts: Dict[str, Any] = Field(default_factory=dict)
    devtools_logs: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    traces: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    page_load_error: Optional[NavigationError] = None


def _find_by_symbol(definitions: List[ArtifactDefinition], symbol: str) -> Optional[ArtifactDefinition]:
    for definition in definitions:
        meta = definition.collector.meta
        if meta is not None and meta.symbol == symbol:
            return definition
    return None


def get_instrumented_definitions(navigation: NavigationDefinition) -> List[ArtifactDefinition]:
    """The navigation's artifacts plus any diagnostic collector it lacks.

    Added diagnostic definitions get ids prefixed with ``_diagnostic:`` and
    never appear in the artifact bundle.
    """
    definitions = list(navigation.artifacts)
    for symbol, collector_class in DIAGNOSTIC_COLLECTORS.items():
        if _find_by_symbol(definitions, symbol) is None:
            definitions.append(ArtifactDefinition(
                id=f"_diagnostic:{collector_class.__name__}",
                collector=CollectorDefinition(path=symbol, instance=collector_class()),
            ))
    return definitions


def _is_diagnostic_only(artifact_id: str) -> bool:
    return artifact_id.startswith("_diagnostic:")


async def _setup(driver: Driver, config: ResolvedConfig, requestor: Requestor) -> BaseArtifacts:
    """Connect, load the blank page and prepare the target for navigating.

    Returns:
        Base artifacts of the run, URLs still unset
    """
    await driver.connect()

    # A callable requestor may navigate through user interaction on the current page
    if isinstance(requestor, str) and not config.settings.skip_about_blank:
        await goto_url(driver, config.settings.blank_page, NavigationOptions(
            wait_until=[WaitCondition.NAVIGATED],
            max_wait_for_load=config.settings.max_wait_for_load,
        ))

    base_artifacts = await get_base_artifacts(config, driver, GatherMode.NAVIGATION)
    await prepare.prepare_target_for_navigation_mode(driver.default_session, config.settings)
    return base_artifacts


async def _setup_navigation(context: NavigationContext) -> List[str]:
    """Reset the page and apply per-navigation throttling, storage and network setup.

    Returns:
        Warnings collected while preparing
    """
    settings = context.config.settings
    if isinstance(context.requestor, str) and not settings.skip_about_blank:
        await goto_url(context.driver, context.navigation.blank_page, NavigationOptions(
            wait_until=[WaitCondition.NAVIGATED],
            max_wait_for_load=settings.max_wait_for_load,
        ))

    return await prepare.prepare_target_for_individual_navigation(
        context.driver.default_session,
        settings,
        context.navigation,
        context.requestor,
    )


async def _cleanup_navigation(context: NavigationContext) -> None:
    await emulation.clear_throttling(context.driver.default_session)


async def _navigate(context: NavigationContext) -> NavigateOutcome:
    """Load the page.

    ``NO_FCP`` and ``PAGE_HUNG`` are recorded rather than raised when the
    requestor is a URL; the URLs then fall back to the requestor.

    Raises:
        NavigationError: Any other navigation error, or any error with a callable requestor
    """
    settings = context.config.settings
    navigation = context.navigation
    options = NavigationOptions(
        wait_until=[WaitCondition.FCP, WaitCondition.LOAD],
        max_wait_for_fcp=settings.max_wait_for_fcp,
        max_wait_for_load=settings.max_wait_for_load,
        pause_after_fcp_ms=navigation.pause_after_fcp_ms,
        pause_after_load_ms=navigation.pause_after_load_ms,
        network_quiet_threshold_ms=navigation.network_quiet_threshold_ms,
        cpu_quiet_threshold_ms=navigation.cpu_quiet_threshold_ms,
        debug_navigation=settings.debug_navigation,
    )

    try:
        result = await goto_url(context.driver, context.requestor, options)
    except NavigationError as e:
        if not e.is_soft_failure or not isinstance(context.requestor, str):
            raise
        logger.warning(f"Navigation to {context.requestor} failed softly: {e.code.value}")
        return NavigateOutcome(
            requested_url=context.requestor,
            main_document_url=context.requestor,
            navigation_error=e,
        )

    return NavigateOutcome(
        requested_url=result.requested_url,
        main_document_url=result.main_document_url,
        warnings=result.warnings,
    )


async def _collect_debug_data(context: NavigationContext, phase_state: PhaseState) -> Dict[str, Any]:
    """Collect the devtools log and trace, and network records from the log.

    Returns:
        Dict with ``devtools_log``, ``records`` and ``trace``; a value is None
        when it could not be collected
    """
    devtools_log_defn = _find_by_symbol(phase_state.artifact_definitions, DEVTOOLS_LOG_SYMBOL)
    trace_defn = _find_by_symbol(phase_state.artifact_definitions, TRACE_SYMBOL)
    definitions = [defn for defn in (devtools_log_defn, trace_defn) if defn is not None]

    debug_data: Dict[str, Any] = {"devtools_log": None, "records": None, "trace": None}
    if not definitions:
        return debug_data

    await collect_phase_artifacts(Phase.GET_ARTIFACT, phase_state, definitions)
    artifact_futures = phase_state.artifact_state[Phase.GET_ARTIFACT]

    async def value_of(definition: Optional[ArtifactDefinition]) -> Any:
        if definition is None:
            return None
        try:
            return await artifact_futures[definition.id]
        except GatherError as e:
            logger.warning(f"Diagnostic artifact {definition.id} unavailable: {e}")
            return None

    debug_data["devtools_log"] = await value_of(devtools_log_defn)
    debug_data["trace"] = await value_of(trace_defn)
    if debug_data["devtools_log"] is not None:
        debug_data["records"] = await NetworkRecords.request(debug_data["devtools_log"], phase_state)

    return debug_data


async def _compute_navigation_result(
    context: NavigationContext,
    phase_state: PhaseState,
    setup_warnings: List[str],
    outcome: NavigateOutcome
) -> NavigationOutput:
    """Classify the page load, then collect either diagnostics or every artifact."""
    warnings = list(setup_warnings) + list(outcome.warnings)
    debug_data = await _collect_debug_data(context, phase_state)

    page_load_error = get_page_load_error(
        outcome.navigation_error,
        url=outcome.requested_url,
        load_failure_mode=context.navigation.load_failure_mode,
        network_records=debug_data["records"],
    )

    if page_load_error is not None:
        logger.error(f"{page_load_error.friendly_message} ({outcome.requested_url})")

        output = NavigationOutput(
            warnings=warnings + [page_load_error.friendly_message],
            page_load_error=page_load_error,
        )
        page_load_error_id = f"{PAGE_LOAD_ERROR_PREFIX}{context.navigation.id}"
        if debug_data["devtools_log"] is not None:
            output.devtools_logs[page_load_error_id] = debug_data["devtools_log"]
        if debug_data["trace"] is not None:
            output.traces[page_load_error_id] = debug_data["trace"]
        return output

    await collect_phase_artifacts(Phase.GET_ARTIFACT, phase_state)
    artifacts = await await_artifacts(phase_state.artifact_state)
    return NavigationOutput(
        artifacts={
            artifact_id: value
            for artifact_id, value in artifacts.items()
            if not _is_diagnostic_only(artifact_id)
        },
        warnings=warnings,
    )


async def _navigation(context: NavigationContext) -> NavigationOutput:
    """Run every phase of one navigation."""
    driver = context.driver
    initial_url = await driver.url()
    phase_state = PhaseState(
        driver=driver,
        gather_mode=GatherMode.NAVIGATION,
        artifact_definitions=get_instrumented_definitions(context.navigation),
        artifact_state=get_empty_artifact_state(),
        url=initial_url,
        computed_cache=context.computed_cache,
        base_artifacts=context.base_artifacts,
        settings=context.config.settings,
    )

    logger.info(f"Starting navigation {context.navigation.id}")
    setup_warnings = await _setup_navigation(context)
    await collect_phase_artifacts(Phase.START_INSTRUMENTATION, phase_state)
    await collect_phase_artifacts(Phase.START_SENSITIVE_INSTRUMENTATION, phase_state)
    outcome = await _navigate(context)

    # URLs are recorded once, by the first navigation
    if not context.base_artifacts.url.is_complete:
        context.base_artifacts.url = URLArtifact(
            initial_url=initial_url,
            requested_url=outcome.requested_url,
            main_document_url=outcome.main_document_url,
            final_url=outcome.main_document_url,
        )
    phase_state.url = outcome.main_document_url

    await collect_phase_artifacts(Phase.STOP_SENSITIVE_INSTRUMENTATION, phase_state)
    await collect_phase_artifacts(Phase.STOP_INSTRUMENTATION, phase_state)
    await _cleanup_navigation(context)

    return await _compute_navigation_result(context, phase_state, setup_warnings, outcome)


async def _navigations(
    driver: Driver,
    config: ResolvedConfig,
    requestor: Requestor,
    base_artifacts: BaseArtifacts,
    computed_cache: ComputedArtifactCache
) -> Dict[str, Any]:
    """Run the configured navigations in order.

    A page-load error on a ``fatal`` navigation halts the remaining ones.

    Returns:
        Dict in the shape ``finalize_artifacts`` accepts
    """
    if not config.navigations:
        raise GatherError("No navigations configured", error_code="no_navigations")

    gathered: Dict[str, Any] = {
        "artifacts": {},
        "devtools_logs": {},
        "traces": {},
        "run_warnings": [],
        "page_load_error": None,
    }

    for navigation in config.navigations:
        context = NavigationContext(
            driver=driver,
            config=config,
            navigation=navigation,
            requestor=requestor,
            base_artifacts=base_artifacts,
            computed_cache=computed_cache,
        )

        output = await _navigation(context)
        gathered["artifacts"].update(output.artifacts)
        gathered["devtools_logs"].update(output.devtools_logs)
        gathered["traces"].update(output.traces)
        gathered["run_warnings"].extend(output.warnings)

        if navigation.load_failure_mode == LoadFailureMode.FATAL and output.page_load_error is not None:
            gathered["page_load_error"] = output.page_load_error
            logger.error(f"Halting after fatal page load error in navigation {navigation.id}")
            break

    return gathered


async def _cleanup(driver: Driver, config: ResolvedConfig, requested_url: Optional[str]) -> List[str]:
    """Clear throttling and origin storage, then disconnect.

    Returns:
        Warnings collected while cleaning up
    """
    session = driver.default_session
    await emulation.clear_throttling(session)

    warnings: List[str] = []
    if not config.settings.disable_storage_reset and requested_url:
        warnings.extend(await storage.clear_data_for_origin(session, requested_url))

    await driver.disconnect()
    return warnings


async def navigation_gather(
    requestor: Union[str, Requestor],
    page: Optional[Page] = None,
    config: Optional[Dict[str, Any]] = None,
    flags: Optional[Dict[str, Any]] = None,
    driver: Optional[Driver] = None
) -> GatherResult:
    """Gather artifacts for one page load per configured navigation.

    Config errors are raised before any browser interaction. A page-load
    error does not raise: it is returned as ``GatherResult.error`` next to
    the diagnostic artifacts.

    Args:
        requestor: URL to load, or a coroutine function that triggers the navigation
        page: Playwright page to drive; when neither it nor ``driver`` is
            given, a browser listening on ``flags['hostname']``/``flags['port']``
            is connected to
        config: Config document, or None for the built-in default
        flags: Settings overrides plus ``config_path``, ``plugins``, ``hostname`` and ``port``
        driver: Driver to use instead of creating one for ``page``

    Returns:
        GatherResult with the artifact bundle and config warnings

    Raises:
        ConfigurationError: If the config is malformed
        DependencyError: If artifact dependencies are out of order or incompatible
        NavigationError: If navigating failed in a way that cannot be recorded
    """
    flags = dict(flags or {})
    hostname = flags.pop("hostname", DEFAULT_HOSTNAME)
    port = flags.pop("port", DEFAULT_PORT)

    resolved, config_warnings = initialize_config(GatherMode.NAVIGATION, config, flags)
    normalized_requestor = requestor if callable(requestor) else normalize_url(requestor)
    computed_cache = ComputedArtifactCache()

    connection = None
    if driver is None:
        if page is None:
            connection = BrowserConnection(hostname, port)
            page = await connection.start()
        driver = Driver(page, protocol_timeout_ms=resolved.settings.protocol_timeout_ms)

    try:
        base_artifacts = await _setup(driver, resolved, normalized_requestor)
        gathered = await _navigations(driver, resolved, normalized_requestor, base_artifacts, computed_cache)

        requested_url = base_artifacts.url.requested_url or (
            normalized_requestor if isinstance(normalized_requestor, str) else None
        )
        gathered["run_warnings"].extend(await _cleanup(driver, resolved, requested_url))

        bundle = finalize_artifacts(base_artifacts, gathered)
    finally:
        if driver.connected:
            await driver.disconnect()
        computed_cache.clear()
        if connection is not None:
            await connection.stop()

    if bundle.page_load_error is not None:
        logger.error(f"Gather finished with page load error {bundle.page_load_error.code.value}")
    else:
        logger.info(f"Gathered {len(bundle.artifacts)} artifacts for {bundle.url.final_url}")

    return GatherResult(artifacts=bundle, config_warnings=config_warnings)
