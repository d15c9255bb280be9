"""
OAuth 1.0a request signing (HMAC-SHA1).

Pure functions implementing the signature base string, percent-encoding
and signing key rules of RFC 5849. No I/O happens here; the token
exchange client composes these into signed requests.

The signature check on the provider side is all-or-nothing: a single
byte of difference in the base string (ordering, encoding, URL
normalization) makes the provider reject the request.
"""

import base64
import hashlib
import hmac
import secrets
import time
from typing import Iterable, Mapping, Optional, Union
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

from app.core.exceptions import NotConfigured

SIGNATURE_METHOD = "HMAC-SHA1"
OAUTH_VERSION = "1.0"

DEFAULT_PORTS = {"http": 80, "https": 443}

Parameters = Union[Mapping[str, str], Iterable[tuple[str, str]]]


def percent_encode(value: object) -> str:
    """
    Percent-encode a value according to RFC 3986.

    Encodes all characters except unreserved: A-Z, a-z, 0-9, -, ., _, ~
    Text is UTF-8 encoded first, so non-ASCII becomes multibyte escapes.
    """
    return quote(str(value), safe="~")


def _pairs(params: Parameters) -> list[tuple[str, str]]:
    if isinstance(params, Mapping):
        return [(str(k), str(v)) for k, v in params.items()]
    return [(str(k), str(v)) for k, v in params]


def normalize_base_url(url: str) -> str:
    """
    Build the base string URI of a request.

    Scheme and host are lowercased, default ports are dropped, query and
    fragment are removed. The path is kept as-is.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        raise ValueError(f"Absolute URL required for signing: {url!r}")

    port = parts.port
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"

    return urlunsplit((scheme, host, parts.path or "/", "", ""))


def normalize_parameters(params: Parameters) -> str:
    """
    Normalize request parameters for the signature base string.

    Names and values are encoded first, then sorted by encoded name and,
    for repeated names, by encoded value. oauth_signature never takes part.
    """
    encoded = [
        (percent_encode(k), percent_encode(v))
        for k, v in _pairs(params)
        if k != "oauth_signature"
    ]
    encoded.sort()
    return "&".join(f"{k}={v}" for k, v in encoded)


def signature_base_string(method: str, url: str, params: Parameters) -> str:
    """
    Build the signature base string per RFC 5849.

    Format: HTTP_METHOD&URL&NORMALIZED_PARAMS

    Query parameters embedded in ``url`` are folded into the parameter set.
    """
    pairs = _pairs(params)
    query = urlsplit(url).query
    if query:
        pairs.extend(parse_qsl(query, keep_blank_values=True))

    return "&".join(
        [
            method.upper(),
            percent_encode(normalize_base_url(url)),
            percent_encode(normalize_parameters(pairs)),
        ]
    )


def signing_key(consumer_secret: str, token_secret: Optional[str] = None) -> str:
    """Signing key: percent_encode(consumer_secret)&percent_encode(token_secret)"""
    return f"{percent_encode(consumer_secret)}&{percent_encode(token_secret or '')}"


def sign_base_string(
    base_string: str, consumer_secret: str, token_secret: Optional[str] = None
) -> str:
    """HMAC-SHA1 over an already built base string, base64-encoded."""
    key = signing_key(consumer_secret, token_secret)
    digest = hmac.new(
        key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def sign(
    method: str,
    url: str,
    params: Parameters,
    consumer_secret: str,
    token_secret: Optional[str] = None,
) -> str:
    """
    Compute the oauth_signature for a request.

    Args:
        method: HTTP method
        url: Request URL (query string allowed, it is folded into params)
        params: Protocol and request parameters
        consumer_secret: Consumer secret issued by the provider
        token_secret: Temporary or access token secret, if any

    Returns:
        Base64-encoded HMAC-SHA1 signature

    Raises:
        NotConfigured: If the consumer secret is empty
    """
    if not consumer_secret:
        raise NotConfigured("oauth1", "Consumer secret is required for signing")
    base_string = signature_base_string(method, url, params)
    return sign_base_string(base_string, consumer_secret, token_secret)


def generate_nonce() -> str:
    """Generate a fresh nonce from 16 cryptographically secure random bytes."""
    return secrets.token_hex(16)


def generate_timestamp() -> str:
    """Get current Unix timestamp as string."""
    return str(int(time.time()))


def protocol_parameters(
    consumer_key: str,
    token: Optional[str] = None,
    verifier: Optional[str] = None,
    callback: Optional[str] = None,
) -> dict[str, str]:
    """
    Build the oauth_* protocol parameters for one request.

    A new nonce and timestamp are generated on every call, so the two
    handshake legs never share them.
    """
    params = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": generate_nonce(),
        "oauth_signature_method": SIGNATURE_METHOD,
        "oauth_timestamp": generate_timestamp(),
        "oauth_version": OAUTH_VERSION,
    }
    if callback is not None:
        params["oauth_callback"] = callback
    if token is not None:
        params["oauth_token"] = token
    if verifier is not None:
        params["oauth_verifier"] = verifier
    return params


def authorization_header(params: Mapping[str, str]) -> str:
    """
    Build OAuth1 Authorization header.

    Format: OAuth oauth_consumer_key="...", oauth_nonce="...", ...
    """
    return "OAuth " + ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(params.items())
    )


def signed_parameters(
    method: str,
    url: str,
    params: Mapping[str, str],
    consumer_secret: str,
    token_secret: Optional[str] = None,
) -> dict[str, str]:
    """Return a copy of ``params`` with oauth_signature added."""
    signed = dict(params)
    signed["oauth_signature"] = sign(method, url, params, consumer_secret, token_secret)
    return signed
