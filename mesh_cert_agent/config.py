"""Application configuration management."""
import os
from typing import Optional

CONTROL_PLANE_COMPONENT_LABEL = "linkerd.io/control-plane-component"

DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_HANDSHAKE_TIMEOUT = 10.0
DEFAULT_CACHE_SYNC_TIMEOUT = 30.0
DEFAULT_WATCH_TIMEOUT = 300


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def get_kubeconfig_path() -> Optional[str]:
    """
    Get the kubeconfig path used when not running inside a cluster.

    Returns:
        Optional[str]: Value of KUBECONFIG, or None to use the client default
    """
    return os.getenv("KUBECONFIG") or None


def get_agent_config() -> dict:
    """
    Get agent configuration from environment variables.

    Returns:
        dict: Timeouts, pod cache settings and log level
    """
    return {
        "connect_timeout": _get_float(
            "MESH_CERT_AGENT_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT
        ),
        "handshake_timeout": _get_float(
            "MESH_CERT_AGENT_HANDSHAKE_TIMEOUT", DEFAULT_HANDSHAKE_TIMEOUT
        ),
        "cache_sync_timeout": _get_float(
            "MESH_CERT_AGENT_CACHE_SYNC_TIMEOUT", DEFAULT_CACHE_SYNC_TIMEOUT
        ),
        "watch_timeout": _get_int("MESH_CERT_AGENT_WATCH_TIMEOUT", DEFAULT_WATCH_TIMEOUT),
        "label_selector": os.getenv(
            "MESH_CERT_AGENT_LABEL_SELECTOR", CONTROL_PLANE_COMPONENT_LABEL
        ),
        "log_level": os.getenv("MESH_CERT_AGENT_LOG_LEVEL", "INFO").upper(),
    }
