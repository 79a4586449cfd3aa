"""Request context extraction for Ethicrawler Shield.

Derives the (user-agent, client IP, request path) triple reported for a
request. Values are sanitized before they are classified or sent anywhere.
"""

import ipaddress
import re
from typing import List, Optional, Sequence, Tuple

from fastapi import Request
from pydantic import BaseModel


# Candidate client IP headers, highest trust first.
IP_HEADERS: Tuple[str, ...] = (
    "cf-connecting-ip",  # Cloudflare
    "x-forwarded-for",  # Load balancer/proxy
    "x-forwarded",
    "x-cluster-client-ip",
    "forwarded-for",
    "forwarded",  # RFC 7239
)

# Ranges a forwarded client address may not fall into. Documentation ranges
# (192.0.2.0/24, 198.51.100.0/24, 203.0.113.0/24) are accepted.
PRIVATE_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("fc00::/7"),
]
RESERVED_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("240.0.0.0/4"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::ffff:0:0/96"),
    ipaddress.ip_network("fe80::/10"),
]

_SCRIPT_STYLE_PATTERN = re.compile(
    r"<(script|style)[^>]*?>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_TAG_PATTERN = re.compile(r"<[^>]*>")
_WHITESPACE_PATTERN = re.compile(r"[\r\n\t ]+")
_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_FORWARDED_FOR_PATTERN = re.compile(r'for=\s*"?\[?([^\]";,]+)', re.IGNORECASE)
_IPV4_PORT_PATTERN = re.compile(r"^(\d{1,3}(?:\.\d{1,3}){3}):\d+$")


def sanitize_text_field(value: Optional[str]) -> str:
    """Strip markup and normalize whitespace in a header value.

    Script and style elements are removed together with their content, any
    other tag is removed leaving its text, a stray `<` is escaped to `&lt;`,
    control characters are dropped and runs of whitespace collapse to one
    space.
    """
    if not value:
        return ""
    sanitized = _SCRIPT_STYLE_PATTERN.sub("", value)
    sanitized = _TAG_PATTERN.sub("", sanitized)
    sanitized = sanitized.replace("<", "&lt;")
    sanitized = _CONTROL_PATTERN.sub("", sanitized)
    sanitized = _WHITESPACE_PATTERN.sub(" ", sanitized)
    return sanitized.strip()


def is_public_ip(ip_str: str) -> bool:
    """Check if string is a well-formed IP outside private and reserved ranges."""
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    for network in PRIVATE_NETWORKS + RESERVED_NETWORKS:
        if ip.version == network.version and ip in network:
            return False
    return True


def _first_address(value: str) -> str:
    """Pick the leftmost address of a possibly comma-separated header value."""
    match = _FORWARDED_FOR_PATTERN.search(value)
    if match:
        value = match.group(1)
    if "," in value:
        value = value.split(",")[0]
    value = value.strip()
    port_match = _IPV4_PORT_PATTERN.match(value)
    if port_match:
        value = port_match.group(1)
    return value


class RequestContext(BaseModel):
    """Reportable metadata of a single request."""

    user_agent: str = ""
    ip_address: str = ""
    path: str = ""


class RequestContextExtractor:
    """Extracts sanitized reportable metadata from a request."""

    def __init__(self, ip_headers: Optional[Sequence[str]] = None):
        """Initialize extractor.

        Args:
            ip_headers: Client IP headers to consult, highest trust first
        """
        self.ip_headers: List[str] = [
            header.lower() for header in (ip_headers or IP_HEADERS)
        ]

    def extract_user_agent(self, request: Request) -> str:
        """Get the sanitized User-Agent, or empty string if absent."""
        return sanitize_text_field(request.headers.get("user-agent"))

    def extract_ip_address(self, request: Request) -> str:
        """Get the client IP address.

        Proxy headers are checked first, then the connection peer. The first
        candidate that is a public IP wins. If none qualifies the raw peer
        address is returned unfiltered, so detection still works behind a
        misconfigured proxy.
        """
        peer = sanitize_text_field(request.client.host) if request.client else ""

        candidates = [request.headers.get(header) for header in self.ip_headers]
        candidates.append(peer)

        for raw_value in candidates:
            if not raw_value:
                continue
            ip = _first_address(sanitize_text_field(raw_value))
            if is_public_ip(ip):
                return ip

        return peer

    def extract_request_path(self, request: Request) -> str:
        """Get the raw request URI (path and query string)."""
        raw_path = request.scope.get("raw_path")
        if raw_path:
            path = raw_path.decode("latin-1")
        else:
            path = request.scope.get("path", "")
        query_string = request.scope.get("query_string", b"")
        if query_string:
            path = f"{path}?{query_string.decode('latin-1')}"
        return sanitize_text_field(path)

    def extract(self, request: Request) -> RequestContext:
        """Extract user-agent, client IP and path in one go."""
        return RequestContext(
            user_agent=self.extract_user_agent(request),
            ip_address=self.extract_ip_address(request),
            path=self.extract_request_path(request),
        )
