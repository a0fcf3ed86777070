"""
Retrieval of a peer certificate chain over TLS.

The handshake is a retrieval mechanism only: chain verification is turned
off and the expected identity is expressed solely through SNI, which the
proxy uses to pick the certificate it presents. No client certificate is
configured.
"""

import logging
import select
import socket
import time
from typing import List, Sequence

from cryptography.hazmat.primitives.serialization import Encoding
from OpenSSL import SSL

from mesh_cert_agent.config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_HANDSHAKE_TIMEOUT
from mesh_cert_agent.core.errors import HandshakeError, UnexpectedChainShapeError

logger = logging.getLogger(__name__)


def _client_context() -> SSL.Context:
    context = SSL.Context(SSL.TLS_CLIENT_METHOD)
    context.set_verify(SSL.VERIFY_NONE)
    return context


def _handshake(connection: SSL.Connection, sock: socket.socket, deadline: float) -> None:
    while True:
        try:
            connection.do_handshake()
            return
        except (SSL.WantReadError, SSL.WantWriteError) as e:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise socket.timeout("handshake timed out")
            if isinstance(e, SSL.WantReadError):
                ready = select.select([sock], [], [], remaining)[0]
            else:
                ready = select.select([], [sock], [], remaining)[1]
            if not ready:
                raise socket.timeout("handshake timed out")


def fetch_peer_cert_chain(
    address: str,
    port: int,
    server_name: str,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
) -> List[bytes]:
    """
    Connect to address:port and return the certificates the peer presents.

    Args:
        address: Peer IP address or host name
        port: Peer TCP port
        server_name: Value sent as the TLS Server Name Indication
        connect_timeout: Seconds allowed for the TCP connection
        handshake_timeout: Seconds allowed for the whole TLS handshake

    Returns:
        List[bytes]: DER encoded certificates, leaf first

    Raises:
        HandshakeError: On any network or TLS failure
    """
    logger.debug(
        "Fetching peer certificate chain",
        extra={"address": address, "port": port, "server_name": server_name},
    )
    try:
        sock = socket.create_connection((address, port), timeout=connect_timeout)
    except OSError as e:
        raise HandshakeError(address, port, server_name, str(e) or type(e).__name__) from e

    try:
        # Non-blocking so the handshake loop can enforce its own deadline
        sock.setblocking(False)
        connection = SSL.Connection(_client_context(), sock)
        connection.set_tlsext_host_name(server_name.encode("ascii"))
        connection.set_connect_state()
        _handshake(connection, sock, time.monotonic() + handshake_timeout)
        chain = connection.get_peer_cert_chain() or []
        return [cert.to_cryptography().public_bytes(Encoding.DER) for cert in chain]
    except (OSError, SSL.Error, UnicodeEncodeError) as e:
        raise HandshakeError(address, port, server_name, str(e) or type(e).__name__) from e
    finally:
        sock.close()


def issuer_chain(peer_certs: Sequence[bytes]) -> List[bytes]:
    """Drop the leaf certificate and return the issuer chain in presented order."""
    if len(peer_certs) < 2:
        raise UnexpectedChainShapeError(len(peer_certs))
    return list(peer_certs[1:])
