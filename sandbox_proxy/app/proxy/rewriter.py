"""
Request Rewriter
================

Pure functions turning a request received on a local listener into the
request sent to the remote sandbox. Nothing here touches the network, so the
whole rewrite can be tested without an HTTP stack.

Rewrite rules:
1. Path becomes /{sandbox}/{cluster}{original path}, below the remote base path
2. Scheme, host and port come from the sandbox remote URL
3. The bearer token replaces any inbound header of the configured name
4. Host is set to the remote host, X-Forwarded-Host to the listener's host:port
5. Hop-by-hop headers are dropped, the query string is kept verbatim

Paths and queries are handled in their escaped (on-the-wire) form and are
never decoded, so "%2F" or "%2541" reach the sandbox unchanged.
"""

from typing import Iterable, List, Tuple

import httpx

from ..models import InboundRequest, OutboundRequest, SandboxContext, ServiceDescriptor

# Hop-by-hop headers (RFC 9110), never forwarded.
HOP_BY_HOP_HEADERS: frozenset = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Recomputed by the HTTP client for the outbound request.
_REQUEST_FRAMING_HEADERS: frozenset = frozenset({"host", "content-length"})

# The relayed body is re-framed (and decoded) by the proxy.
_RESPONSE_FRAMING_HEADERS: frozenset = frozenset({"content-length", "content-encoding"})

REDACTED = "Bearer ***"


def escape_request_target(raw: bytes) -> str:
    """
    Text form of a raw request path or query.

    Printable ASCII is kept byte for byte, existing escapes included. Other
    bytes (only sent by non-conforming clients) are percent-encoded.
    """
    return "".join(
        chr(byte) if 0x20 < byte < 0x7F else f"%{byte:02X}"
        for byte in raw
    )


def rewrite_path(service: ServiceDescriptor, sandbox: SandboxContext, path: str) -> str:
    """
    Compute the upstream path for the escaped inbound ``path``.

    Example:
        sandbox "acme", cluster services, "/v1/features"
        -> "/acme/services/v1/features"
    """
    if not path.startswith("/"):
        path = "/" + path

    base_path = sandbox.remote.raw_path.split(b"?", 1)[0].decode("ascii").rstrip("/")
    return f"{base_path}/{sandbox.name}/{service.path_segment}{path}"


def _host_header(url: httpx.URL) -> str:
    # netloc omits default ports and brackets IPv6 hosts
    return url.netloc.decode("ascii")


def _connection_tokens(headers: Iterable[Tuple[str, str]]) -> frozenset:
    """Header names listed in Connection are hop-by-hop for this request too."""
    tokens = set()
    for key, value in headers:
        if key.lower() == "connection":
            tokens.update(token.strip().lower() for token in value.split(",") if token.strip())
    return frozenset(tokens)


def rewrite_headers(
    inbound: InboundRequest,
    sandbox: SandboxContext,
    remote_host: str,
) -> List[Tuple[str, str]]:
    """Build the outbound header list for an inbound request."""
    auth_header = sandbox.auth_header_name.lower()
    dropped = HOP_BY_HOP_HEADERS | _REQUEST_FRAMING_HEADERS | _connection_tokens(inbound.headers) | {
        auth_header,
        "x-forwarded-host",
    }

    forwarded_for = None
    headers: List[Tuple[str, str]] = []
    for key, value in inbound.headers:
        lower_key = key.lower()
        if lower_key in dropped:
            continue
        if lower_key == "x-forwarded-for":
            forwarded_for = value if forwarded_for is None else f"{forwarded_for}, {value}"
            continue
        headers.append((key, value))

    if inbound.client_host:
        forwarded_for = (
            inbound.client_host if forwarded_for is None else f"{forwarded_for}, {inbound.client_host}"
        )

    headers.append(("Host", remote_host))
    headers.append(("X-Forwarded-Host", inbound.listener_host))
    if forwarded_for is not None:
        headers.append(("X-Forwarded-For", forwarded_for))
    headers.append((sandbox.auth_header_name, sandbox.authorization_value))

    return headers


def rewrite_request(
    inbound: InboundRequest,
    service: ServiceDescriptor,
    sandbox: SandboxContext,
) -> OutboundRequest:
    """
    Rewrite an inbound request for the remote sandbox.

    The result depends only on the arguments: rewriting the same request
    twice gives equal outbound requests.
    """
    remote = sandbox.remote
    target = rewrite_path(service, sandbox, inbound.path)
    if inbound.query:
        target = f"{target}?{inbound.query}"

    # raw_path is taken as already escaped: existing %XX sequences are kept
    url = remote.copy_with(raw_path=target.encode("ascii"), fragment=None)

    return OutboundRequest(
        method=inbound.method.upper(),
        url=str(url),
        headers=tuple(rewrite_headers(inbound, sandbox, _host_header(remote))),
    )


def filter_response_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Upstream response headers relayed to the caller."""
    headers = list(headers)
    dropped = HOP_BY_HOP_HEADERS | _RESPONSE_FRAMING_HEADERS | _connection_tokens(headers)
    return [(key, value) for key, value in headers if key.lower() not in dropped]


def redact_headers(headers: Iterable[Tuple[str, str]], auth_header_name: str) -> List[Tuple[str, str]]:
    """Copy of ``headers`` safe to log."""
    auth_header = auth_header_name.lower()
    return [
        (key, REDACTED if key.lower() == auth_header else value)
        for key, value in headers
    ]
