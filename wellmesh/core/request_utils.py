"""Request utility functions for handling common request operations."""

import ipaddress
import logging
from collections.abc import Collection

from fastapi import Request

logger = logging.getLogger(__name__)


def is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request, trusted_proxies: Collection[str] = ()) -> str:
    """Get the client address used to identify a caller.

    X-Forwarded-For / X-Real-IP are spoofable, so they are only honoured when
    the direct connection comes from one of ``trusted_proxies``.

    Returns "unknown" when the request carries no peer address.
    """
    direct_ip = request.client.host if request.client else None

    if trusted_proxies and direct_ip and direct_ip in trusted_proxies:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
            if is_valid_ip(client_ip):
                return client_ip
            logger.warning(f"Invalid IP in X-Forwarded-For header: {client_ip}")

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            client_ip = real_ip.strip()
            if is_valid_ip(client_ip):
                return client_ip
            logger.warning(f"Invalid IP in X-Real-IP header: {real_ip}")
    elif request.headers.get("X-Forwarded-For"):
        logger.debug(f"Ignoring X-Forwarded-For from untrusted source: {direct_ip}")

    if direct_ip:
        return direct_ip

    return "unknown"
