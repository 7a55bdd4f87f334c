"""Source URL validation for docsync pipelines.

Only pages on a fixed set of documentation hosts are ever requested. URLs
with other schemes, other hosts, or literal private addresses are rejected
before any network call.
"""

import ipaddress
import logging
from typing import Iterable, Optional, Tuple
from urllib.parse import urlparse

from ..errors import InvalidUrlError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = {'http', 'https'}


def is_private_ip(value: str) -> bool:
    """True when ``value`` is an IP literal outside the public address space.

    Host names are never resolved here, so anything that is not an address
    literal is reported as public.
    """
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return (address.is_private or address.is_loopback or address.is_link_local
            or address.is_unspecified or address.is_reserved)


def validate_source_url(url: Optional[str], allowed_domains: Iterable[str]) -> Tuple[bool, Optional[str]]:
    """Validate a documentation URL against the allow-listed hosts.

    Args:
        url: URL to validate
        allowed_domains: Host names that may be fetched (exact, case-insensitive)

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not url or not url.strip():
        return False, "URL is empty"

    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError as e:
        return False, f"Malformed URL: {e}"

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return False, f"Scheme '{parsed.scheme}' not allowed. Only {sorted(ALLOWED_SCHEMES)} are permitted."

    if not hostname:
        return False, "URL must have a valid hostname."

    if is_private_ip(hostname):
        return False, f"Private IP address '{hostname}' is blocked."

    allowed = {d.lower() for d in allowed_domains}
    if hostname.lower() not in allowed:
        return False, f"Host '{hostname}' is not an allow-listed documentation domain."

    return True, None


def check_source_url(url: Optional[str], allowed_domains: Iterable[str]) -> str:
    """Validate a URL and raise if it may not be fetched.

    Returns:
        The stripped URL

    Raises:
        InvalidUrlError: If the URL is malformed or not allow-listed
    """
    is_valid, error_msg = validate_source_url(url, allowed_domains)
    if not is_valid:
        logger.warning(f"Rejected documentation URL: {url} - {error_msg}")
        raise InvalidUrlError(url or "", error_msg)
    return url.strip()
