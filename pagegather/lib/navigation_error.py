"""Page-load error classification.

Turns the raw outcome of a navigation plus the network records observed
during it into at most one typed NavigationError. All functions here are
pure.
"""

from typing import List, Optional, Sequence

from ..models.artifacts import NetworkRequest
from ..models.config import LoadFailureMode
from .errors import NavigationError, NavigationErrorCode
from .url_utils import equal_with_excluded_fragments

HTML_MIME_TYPE = "text/html"
NO_RESPONSE_DETAILS = "No response was received for the document request"
INTERSTITIAL_DOCUMENT_PREFIX = "chrome-error://"
DNS_FAILURE_DESCRIPTION = "net::ERR_NAME_NOT_RESOLVED"
CERTIFICATE_ERROR_MARKER = "ERR_CERT"


def get_network_error(main_record: Optional[NetworkRequest]) -> Optional[NavigationError]:
    """Classify failures of the main document request itself.

    Args:
        main_record: The request for the requested URL, if one was made

    Returns:
        NavigationError, or None if the document request succeeded
    """
    if main_record is None:
        return NavigationError(NavigationErrorCode.NO_DOCUMENT_REQUEST)

    if main_record.failed:
        description = main_record.localized_fail_description
        if description == DNS_FAILURE_DESCRIPTION:
            return NavigationError(NavigationErrorCode.DNS_FAILURE)
        return NavigationError(
            NavigationErrorCode.FAILED_DOCUMENT_REQUEST,
            error_details=description
        )

    # Never answered, never failed: still pending when the load ended
    if not main_record.finished and main_record.status_code == -1:
        return NavigationError(
            NavigationErrorCode.FAILED_DOCUMENT_REQUEST,
            error_details=NO_RESPONSE_DETAILS
        )

    if main_record.status_code >= 400:
        return NavigationError(
            NavigationErrorCode.ERRORED_DOCUMENT_REQUEST,
            status_code=str(main_record.status_code)
        )

    return None


def get_interstitial_error(
    main_record: Optional[NetworkRequest],
    network_records: Sequence[NetworkRequest]
) -> Optional[NavigationError]:
    """Detect the browser replacing a failed page with an error interstitial.

    An interstitial only counts when the main document request also failed;
    an interstitial in some iframe is not a page-load failure.
    """
    if main_record is None:
        return None

    interstitial = next(
        (record for record in network_records
         if record.document_url.startswith(INTERSTITIAL_DOCUMENT_PREFIX)),
        None
    )
    if interstitial is None or not main_record.failed:
        return None

    description = main_record.localized_fail_description
    if CERTIFICATE_ERROR_MARKER in description:
        return NavigationError(
            NavigationErrorCode.INSECURE_DOCUMENT_REQUEST,
            security_messages=description
        )

    return NavigationError(NavigationErrorCode.CHROME_INTERSTITIAL_ERROR)


def get_non_html_error(final_record: Optional[NetworkRequest]) -> Optional[NavigationError]:
    """Flag a final document that was not served as HTML."""
    if final_record is None:
        return None

    # No response means no MIME type to judge
    if final_record.status_code == -1:
        return None

    if final_record.mime_type != HTML_MIME_TYPE:
        return NavigationError(
            NavigationErrorCode.NOT_HTML,
            mime_type=final_record.mime_type
        )

    return None


def find_main_record(network_records: Sequence[NetworkRequest], url: str) -> Optional[NetworkRequest]:
    """Find the request for ``url``, ignoring fragments.

    Falls back to the first document request when no URL matches.
    """
    for record in network_records:
        if equal_with_excluded_fragments(record.url, url):
            return record
    return next((record for record in network_records if record.is_document), None)


def follow_redirects(record: NetworkRequest) -> NetworkRequest:
    """Return the last hop of a redirect chain."""
    seen = {id(record)}
    while record.redirect_destination is not None and id(record.redirect_destination) not in seen:
        record = record.redirect_destination
        seen.add(id(record))
    return record


def get_page_load_error(
    navigation_error: Optional[NavigationError],
    url: str,
    load_failure_mode: LoadFailureMode,
    network_records: Optional[List[NetworkRequest]]
) -> Optional[NavigationError]:
    """Reduce everything known about a navigation to at most one error.

    Precedence: interstitial, then network, then non-HTML, then the raw
    navigation error.

    Args:
        navigation_error: Error raised while navigating, if any
        url: The requested URL
        load_failure_mode: How the navigation treats failures
        network_records: Records observed during the navigation, or None
            when they could not be computed

    Returns:
        The NavigationError to report, or None
    """
    if LoadFailureMode(load_failure_mode) == LoadFailureMode.IGNORE:
        return None

    if network_records is None:
        return navigation_error

    main_record = find_main_record(network_records, url)
    final_record = follow_redirects(main_record) if main_record is not None else None

    interstitial_error = get_interstitial_error(main_record, network_records)
    if interstitial_error:
        return interstitial_error

    network_error = get_network_error(main_record)
    if network_error:
        return network_error

    non_html_error = get_non_html_error(final_record)
    if non_html_error:
        return non_html_error

    return navigation_error
