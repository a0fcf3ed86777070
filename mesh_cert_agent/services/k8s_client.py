from kubernetes import config, client
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def initialize_kubernetes_client(kubeconfig: Optional[str] = None) -> Optional[client.CoreV1Api]:
    """
    Load cluster credentials and return a CoreV1Api.

    In-cluster configuration is tried first; outside a cluster the kubeconfig
    at `kubeconfig` (or the client default) is used. Returns None when no
    configuration can be loaded or the API server rejects the probe request.
    """
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config.")
    except config.ConfigException:
        try:
            config.load_kube_config(config_file=kubeconfig)
            logger.info("Loaded kubeconfig.")
        except config.ConfigException as e:
            logger.error(f"Could not load Kubernetes config: {e}")
            return None

    core_v1_api = client.CoreV1Api()
    try:
        # Verify connectivity and RBAC with a minimal list
        core_v1_api.list_pod_for_all_namespaces(limit=1)
    except client.ApiException as e:
        logger.error(f"Kubernetes API error during initialization: {e}")
        return None
    logger.info("Kubernetes client initialized successfully.")
    return core_v1_api
