"""
Exceptions raised while discovering control plane certificates.

Every failure of a discovery run is terminal for that run. Callers catch
CertificateDiscoveryError to handle any of them, or a specific subclass to
tell, for example, a missing identity pod from one that is not ready yet.
"""

from typing import Optional


class CertificateDiscoveryError(Exception):
    """Base exception for control plane certificate discovery."""

    pass


class PodCacheError(CertificateDiscoveryError):
    """Raised when the local pod mirror cannot be read."""

    pass


class NotFoundError(CertificateDiscoveryError):
    """Raised when no pod carries the control plane component label."""

    def __init__(self, component: str):
        self.component = component
        super().__init__(f"could not find linkerd-{component} pod")


class NotReadyError(CertificateDiscoveryError):
    """Raised when component pods exist but none of them is running."""

    def __init__(self, component: str, pod_count: int = 0):
        self.component = component
        self.pod_count = pod_count
        super().__init__(f"could not find running pod for linkerd-{component}")


class MissingContainerError(CertificateDiscoveryError):
    """Raised when a pod has no proxy container."""

    def __init__(self, pod_name: str, namespace: str, container_name: str):
        self.pod_name = pod_name
        self.namespace = namespace
        self.container_name = container_name
        super().__init__(f"could not find proxy container in pod {namespace}/{pod_name}")


def _pod_suffix(pod_name: Optional[str], namespace: Optional[str]) -> str:
    if not pod_name:
        return ""
    return f" in pod {namespace}/{pod_name}"


class MissingPortError(CertificateDiscoveryError):
    """Raised when the proxy container does not declare the admin port."""

    def __init__(
        self,
        container_name: str,
        port_name: str,
        pod_name: Optional[str] = None,
        namespace: Optional[str] = None,
    ):
        self.container_name = container_name
        self.port_name = port_name
        self.pod_name = pod_name
        self.namespace = namespace
        super().__init__(
            f"could not find port {port_name} on proxy container [{container_name}]"
            + _pod_suffix(pod_name, namespace)
        )


class MissingConfigError(CertificateDiscoveryError):
    """Raised when a required environment variable is absent from the proxy container."""

    def __init__(
        self,
        container_name: str,
        env_var: str,
        message: Optional[str] = None,
        pod_name: Optional[str] = None,
        namespace: Optional[str] = None,
    ):
        self.container_name = container_name
        self.env_var = env_var
        self.pod_name = pod_name
        self.namespace = namespace
        super().__init__(
            (message or f"could not find {env_var} env var on proxy container [{container_name}]")
            + _pod_suffix(pod_name, namespace)
        )


class MissingAddressError(CertificateDiscoveryError):
    """Raised when a running pod has no network address to dial."""

    def __init__(self, pod_name: str, namespace: str):
        self.pod_name = pod_name
        self.namespace = namespace
        super().__init__(f"pod {namespace}/{pod_name} has no pod IP assigned")


class HandshakeError(CertificateDiscoveryError):
    """Raised when the proxy admin endpoint cannot be reached over TLS."""

    def __init__(
        self,
        address: str,
        port: int,
        server_name: str,
        reason: str,
        pod_name: Optional[str] = None,
        namespace: Optional[str] = None,
    ):
        self.address = address
        self.port = port
        self.server_name = server_name
        self.reason = reason
        self.pod_name = pod_name
        self.namespace = namespace
        super().__init__(
            f"TLS handshake with {address}:{port} (server name {server_name})"
            f"{_pod_suffix(pod_name, namespace)} failed: {reason}"
        )


class UnexpectedChainShapeError(CertificateDiscoveryError):
    """Raised when the peer presents fewer certificates than leaf plus issuer."""

    def __init__(self, cert_count: int):
        self.cert_count = cert_count
        super().__init__(f"expected to get at least 2 peer certs, got {cert_count}")


class EncodingError(CertificateDiscoveryError):
    """Raised when a certificate cannot be serialized to PEM."""

    pass
