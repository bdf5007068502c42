"""Decode image payloads submitted with mutation inputs.

Accepted forms:
    - ``http://`` / ``https://`` URL, downloaded
    - ``data:<mime>;base64,<payload>`` URI
    - bare base64 text
"""
from __future__ import annotations

import base64
import binascii
import ipaddress
import logging
import re
import socket
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import HTTPRedirectHandler, Request, build_opener

from tagstash.common.exceptions import ImageDecodeError
from tagstash.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = {"http", "https"}

BLOCKED_IP_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("100.64.0.0/10"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

_DATA_URI_RE = re.compile(r"^data:[^;,]+;base64,(.*)$", re.DOTALL)


def process_image_input(raw: str) -> bytes:
    """Turn an image input string into raw bytes.

    An empty string yields ``b""``; on update that means "clear the image".

    Raises:
        ImageDecodeError: malformed base64, failed download, or oversized payload
    """
    value = raw.strip()
    if not value:
        return b""

    if urlparse(value).scheme.lower() in ALLOWED_SCHEMES:
        data = read_image_from_url(value)
    else:
        data = decode_base64_image(value)

    max_bytes = get_settings().image_max_bytes
    if len(data) > max_bytes:
        raise ImageDecodeError(f"image exceeds {max_bytes} bytes")
    return data


def decode_base64_image(value: str) -> bytes:
    match = _DATA_URI_RE.match(value)
    payload = match.group(1) if match else value
    payload = "".join(payload.split())
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError("malformed base64 payload") from exc


def is_blocked_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip in network for network in BLOCKED_IP_NETWORKS)


def ensure_url_allowed(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise ImageDecodeError(f"unsupported URL scheme: {parsed.scheme}")

    hostname = parsed.hostname
    if not hostname:
        raise ImageDecodeError("URL has no host")
    if hostname.lower() in ("localhost", "localhost.localdomain"):
        raise ImageDecodeError("URL host is not allowed")

    try:
        addresses = [ipaddress.ip_address(hostname)]
    except ValueError:
        try:
            infos = socket.getaddrinfo(hostname, parsed.port or 80, proto=socket.IPPROTO_TCP)
        except socket.gaierror as exc:
            raise ImageDecodeError(f"cannot resolve host: {hostname}") from exc
        addresses = [ipaddress.ip_address(info[4][0]) for info in infos]

    if any(is_blocked_ip(ip) for ip in addresses):
        raise ImageDecodeError("URL host is not allowed")


class CheckedRedirectHandler(HTTPRedirectHandler):
    """Runs every redirect target through ``ensure_url_allowed`` before following it."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001
        ensure_url_allowed(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


def open_url(request: Request, timeout: float):
    return build_opener(CheckedRedirectHandler).open(request, timeout=timeout)


def read_image_from_url(url: str) -> bytes:
    ensure_url_allowed(url)
    settings = get_settings()
    request = Request(url, headers={"User-Agent": "tagstash"})
    try:
        with open_url(request, timeout=settings.image_fetch_timeout_sec) as resp:
            # one extra byte tells an oversized body from an exact fit
            data = resp.read(settings.image_max_bytes + 1)
    except HTTPError as exc:
        raise ImageDecodeError(f"image download failed with status {exc.code}") from exc
    except (URLError, TimeoutError, OSError) as exc:
        logger.warning("image_download_failed url=%s error=%s", url, exc)
        raise ImageDecodeError("image download failed") from exc
    return data
