"""URL safety checks for website fetches.

Website sources are user supplied, so page and sitemap fetches refuse
private network addresses, internal service ports and non-HTTP schemes.
"""

import ipaddress
import socket
from typing import Optional, Set, Tuple
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)

PRIVATE_IP_RANGES = [
    ipaddress.ip_network('10.0.0.0/8'),
    ipaddress.ip_network('172.16.0.0/12'),
    ipaddress.ip_network('192.168.0.0/16'),
    ipaddress.ip_network('127.0.0.0/8'),
    ipaddress.ip_network('169.254.0.0/16'),
    ipaddress.ip_network('::1/128'),
    ipaddress.ip_network('fc00::/7'),
    ipaddress.ip_network('fe80::/10'),
    ipaddress.ip_network('0.0.0.0/8'),
    ipaddress.ip_network('224.0.0.0/4'),
    ipaddress.ip_network('240.0.0.0/4'),
]

# Common internal services
BLOCKED_PORTS = {22, 23, 25, 53, 110, 143, 3306, 3389, 5432, 6379, 9200, 27017}

ALLOWED_SCHEMES = {'http', 'https'}

LOCALHOST_NAMES = {'localhost', '0.0.0.0', '0', 'local'}

METADATA_HOSTS = ('metadata.google.internal', '169.254.169.254', 'metadata.azure.com')


class SSRFError(Exception):
    """Raised when a URL points at a disallowed destination."""
    pass


def is_private_ip(ip_str: str) -> bool:
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return True
    return any(ip in network for network in PRIVATE_IP_RANGES)


def resolve_hostname(hostname: str) -> Set[str]:
    """Resolve a hostname, refusing names that map to private addresses."""
    try:
        addr_info = socket.getaddrinfo(hostname, None)
    except socket.gaierror as e:
        raise SSRFError(f"Failed to resolve hostname {hostname}: {e}")

    ips = {info[4][0] for info in addr_info}
    private_ips = sorted(ip for ip in ips if is_private_ip(ip))
    if private_ips:
        raise SSRFError(f"Hostname {hostname} resolves to private IP(s): {private_ips}")
    return ips


def validate_url_security(url: str, resolve: bool = True) -> Tuple[bool, Optional[str]]:
    """Validate a URL before fetching it.

    Returns:
        Tuple of (is_safe, error_message)
    """
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError as e:
        return False, f"URL validation error: {e}"

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return False, f"Scheme '{parsed.scheme}' not allowed"

    hostname = parsed.hostname
    if not hostname:
        return False, "URL must have a valid hostname"

    if hostname.lower() in LOCALHOST_NAMES:
        return False, f"Localhost hostname '{hostname}' is blocked"

    if port and port in BLOCKED_PORTS:
        return False, f"Port {port} is blocked"

    if any(pattern in hostname.lower() for pattern in METADATA_HOSTS):
        return False, f"Metadata service host '{hostname}' is blocked"

    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        if resolve:
            try:
                resolve_hostname(hostname)
            except SSRFError as e:
                return False, str(e)
    else:
        if is_private_ip(hostname):
            return False, f"Private IP address '{hostname}' is blocked"

    return True, None


def check_url_ssrf(url: str, resolve: bool = True) -> None:
    """Raise SSRFError if the URL must not be fetched."""
    is_safe, error_msg = validate_url_security(url, resolve=resolve)
    if not is_safe:
        logger.warning(f"Blocked URL {url}: {error_msg}")
        raise SSRFError(f"URL blocked: {error_msg}")
