"""
IP metadata lookups used to fill in provider and region for new nodes.
"""

import ipaddress
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

import ipinfo

from hft_nodekit.config import get_config
from hft_nodekit.toolkit.core.errors import NodeKitError

logger = logging.getLogger(__name__)


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def get_ip_info(ip_address: str, token: Optional[str] = None) -> Dict[str, Any]:
    """
    Look up an address with the ipinfo.io API.

    Args:
        ip_address: The IP address to look up
        token: Optional API token (defaults to ``toolkit.ipinfo_token``)

    Returns:
        The ipinfo fields plus:
        - asn: AS number ("AS0" when unknown)
        - org_name: Organization name without ASN
        - provider: Short provider label derived from org_name
        - region_label: "<city>, <country>"

    Raises:
        NodeKitError: The lookup failed
    """
    if token is None:
        token = get_config().get("toolkit.ipinfo_token") or None
    return _get_ip_info_cached(ip_address, token)


@lru_cache(maxsize=256)
def _get_ip_info_cached(ip_address: str, token: Optional[str]) -> Dict[str, Any]:
    try:
        details = ipinfo.getHandler(token).getDetails(ip_address)
    except Exception as e:
        raise NodeKitError(f"Failed to retrieve IP information for {ip_address}: {e}") from e

    result = dict(details.all)

    org_info = result.get("org", "") or ""
    if org_info.startswith("AS") and " " in org_info:
        asn, org = org_info.split(" ", 1)
    else:
        asn, org = "AS0", org_info
    result["asn"] = asn
    result["org_name"] = org
    result["provider"] = org.split(",")[0].split(" ")[0].lower() if org else "unknown"
    result["region_label"] = f"{result.get('city', 'Unknown')}, {result.get('country', '??')}"
    logger.debug(f"ipinfo {ip_address}: {asn} {org} {result['region_label']}")
    return result
