"""TLS contexts for the echo server and its clients."""

from __future__ import annotations

import ssl
from typing import Optional


def client_context(ca_file: Optional[str] = None, verify_hostname: bool = True) -> ssl.SSLContext:
    """Client context; trusts ``ca_file`` when given, the system store otherwise."""
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    if ca_file:
        ctx.load_verify_locations(ca_file)
    else:
        ctx.load_default_certs(ssl.Purpose.SERVER_AUTH)
    ctx.check_hostname = verify_hostname
    return ctx


def server_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(cert_file, key_file)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    return ctx
