"""
Discovery of the live PKI material of the mesh identity component.

The identity pod is looked up in the local pod mirror, its proxy container
supplies the configured trust anchors, and a TLS handshake with the proxy
admin port yields the issuer chain actually in use.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from kubernetes import client

from mesh_cert_agent.config import (
    CONTROL_PLANE_COMPONENT_LABEL,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_HANDSHAKE_TIMEOUT,
)
from mesh_cert_agent.core.errors import (
    CertificateDiscoveryError,
    HandshakeError,
    MissingAddressError,
    MissingConfigError,
    MissingContainerError,
    MissingPortError,
    NotFoundError,
    NotReadyError,
)
from mesh_cert_agent.models.certificates import CertData, ControlPlaneCerts
from mesh_cert_agent.services.pem import encode_certificates_pem
from mesh_cert_agent.services.pod_cache import PodLister
from mesh_cert_agent.services.tls import fetch_peer_cert_chain, issuer_chain

logger = logging.getLogger(__name__)

IDENTITY_COMPONENT_NAME = "identity"
PROXY_CONTAINER_NAME = "linkerd-proxy"
PROXY_ADMIN_PORT_NAME = "linkerd-admin"
TRUST_ANCHORS_ENV_VAR = "LINKERD2_PROXY_IDENTITY_TRUST_ANCHORS"
LINKERD_NS_ENV_VAR = "_l5d_ns"
TRUST_DOMAIN_ENV_VAR = "_l5d_trustdomain"

POD_RUNNING = "Running"

ChainFetcher = Callable[..., List[bytes]]


def get_proxy_container(pod: client.V1Pod) -> client.V1Container:
    for container in (pod.spec.containers if pod.spec else None) or []:
        if container.name == PROXY_CONTAINER_NAME:
            return container

    raise MissingContainerError(pod.metadata.name, pod.metadata.namespace, PROXY_CONTAINER_NAME)


def get_proxy_admin_port(
    container: client.V1Container, pod: Optional[client.V1Pod] = None
) -> int:
    for port in container.ports or []:
        if port.name == PROXY_ADMIN_PORT_NAME:
            return port.container_port

    raise MissingPortError(container.name, PROXY_ADMIN_PORT_NAME, *_pod_ref(pod))


def _pod_ref(pod: Optional[client.V1Pod]) -> Tuple[Optional[str], Optional[str]]:
    if pod is None or pod.metadata is None:
        return None, None
    return pod.metadata.name, pod.metadata.namespace


def _env_value(container: client.V1Container, name: str) -> Optional[str]:
    """Value of the last env entry called `name`, or None if there is none."""
    value = None
    for env in container.env or []:
        if env.name == name:
            value = env.value or ""
    return value


def build_server_name(
    service_account: str, namespace: str, mesh_namespace: str, trust_domain: str
) -> str:
    return f"{service_account}.{namespace}.serviceaccount.identity.{mesh_namespace}.{trust_domain}"


def get_server_name(
    service_account: str,
    namespace: str,
    container: client.V1Container,
    pod_name: Optional[str] = None,
) -> str:
    """
    Derive the identity the proxy presents for this pod.

    The result is only ever used as a TLS server name hint; it is a logical
    identity and does not resolve in DNS.
    """
    mesh_namespace = _env_value(container, LINKERD_NS_ENV_VAR)
    if not mesh_namespace:
        raise MissingConfigError(
            container.name, LINKERD_NS_ENV_VAR, pod_name=pod_name, namespace=namespace
        )

    trust_domain = _env_value(container, TRUST_DOMAIN_ENV_VAR)
    if not trust_domain:
        raise MissingConfigError(
            container.name, TRUST_DOMAIN_ENV_VAR, pod_name=pod_name, namespace=namespace
        )

    return build_server_name(service_account, namespace, mesh_namespace, trust_domain)


def extract_roots_certs(
    container: client.V1Container, pod: Optional[client.V1Pod] = None
) -> CertData:
    roots = _env_value(container, TRUST_ANCHORS_ENV_VAR)
    if roots is None:
        raise MissingConfigError(
            container.name,
            TRUST_ANCHORS_ENV_VAR,
            f"could not find env var with name {TRUST_ANCHORS_ENV_VAR} "
            f"on proxy container [{container.name}]",
            *_pod_ref(pod),
        )

    return CertData(raw=roots.encode("utf-8"))


def extract_issuer_cert_chain(
    pod: client.V1Pod,
    container: client.V1Container,
    chain_fetcher: ChainFetcher = fetch_peer_cert_chain,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
) -> CertData:
    port = get_proxy_admin_port(container, pod)
    pod_name, namespace = _pod_ref(pod)
    server_name = get_server_name(
        pod.spec.service_account_name, namespace, container, pod_name=pod_name
    )

    address = pod.status.pod_ip if pod.status else None
    if not address:
        raise MissingAddressError(pod_name, namespace)

    try:
        peer_certs: Sequence[bytes] = chain_fetcher(
            address,
            port,
            server_name,
            connect_timeout=connect_timeout,
            handshake_timeout=handshake_timeout,
        )
    except HandshakeError as e:
        raise HandshakeError(
            e.address, e.port, e.server_name, e.reason, pod_name=pod_name, namespace=namespace
        ) from e

    # skip the end cert
    return CertData(raw=encode_certificates_pem(issuer_chain(peer_certs)))


class CertificatesClient:
    """Reads control plane certificates using a local pod mirror."""

    def __init__(
        self,
        pod_lister: PodLister,
        chain_fetcher: ChainFetcher = fetch_peer_cert_chain,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
    ):
        self.pod_lister = pod_lister
        self.chain_fetcher = chain_fetcher
        self.connect_timeout = connect_timeout
        self.handshake_timeout = handshake_timeout

    def get_control_plane_certs(self) -> ControlPlaneCerts:
        """
        Run one discovery of the identity component's certificates.

        Returns:
            ControlPlaneCerts: Configured trust anchors and live issuer chain

        Raises:
            CertificateDiscoveryError: On any failure; no partial result is returned
        """
        pod_ref = None
        try:
            identity_pod = self.get_control_plane_component_pod(IDENTITY_COMPONENT_NAME)
            pod_ref = f"{identity_pod.metadata.namespace}/{identity_pod.metadata.name}"

            container = get_proxy_container(identity_pod)
            roots = extract_roots_certs(container, identity_pod)
            issuer_certs = extract_issuer_cert_chain(
                identity_pod,
                container,
                chain_fetcher=self.chain_fetcher,
                connect_timeout=self.connect_timeout,
                handshake_timeout=self.handshake_timeout,
            )
        except CertificateDiscoveryError as e:
            logger.error(
                f"Failed to read control plane certificates: {e}",
                extra={
                    "component": IDENTITY_COMPONENT_NAME,
                    "pod": pod_ref,
                    "error_type": type(e).__name__,
                },
            )
            raise

        logger.info(
            "Read control plane certificates",
            extra={
                "pod": pod_ref,
                "roots_bytes": len(roots.raw),
                "issuer_chain_bytes": len(issuer_certs.raw),
            },
        )
        return ControlPlaneCerts(roots=roots, issuer_crt_chain=issuer_certs)

    def get_control_plane_component_pod(self, component: str) -> client.V1Pod:
        """Return the first running pod labelled as `component`, in mirror order."""
        pods = self.pod_lister.list({CONTROL_PLANE_COMPONENT_LABEL: component})
        if not pods:
            raise NotFoundError(component)

        for pod in pods:
            if pod.status is not None and pod.status.phase == POD_RUNNING:
                return pod

        raise NotReadyError(component, len(pods))
