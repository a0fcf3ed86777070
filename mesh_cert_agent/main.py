import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from mesh_cert_agent.api.v1.certificates import router as certificates_router
from mesh_cert_agent.config import get_agent_config, get_kubeconfig_path
from mesh_cert_agent.services.certificates import CertificatesClient
from mesh_cert_agent.services.k8s_client import initialize_kubernetes_client
from mesh_cert_agent.services.pod_cache import PodCache

load_dotenv()


# Define a filter to exclude /health endpoint from logs
class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return "GET /health" not in record.getMessage()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


agent_config = get_agent_config()
configure_logging(agent_config["log_level"])
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    app.state.pod_cache = None
    app.state.certificates_client = None

    core_v1_api = initialize_kubernetes_client(get_kubeconfig_path())
    if core_v1_api is None:
        logger.warning("Certificate discovery disabled: Kubernetes client not available")
    else:
        pod_cache = PodCache(
            core_v1_api,
            label_selector=agent_config["label_selector"],
            watch_timeout=agent_config["watch_timeout"],
        )
        pod_cache.start()
        pod_cache.sync(agent_config["cache_sync_timeout"])
        app.state.pod_cache = pod_cache
        app.state.certificates_client = CertificatesClient(
            pod_cache,
            connect_timeout=agent_config["connect_timeout"],
            handshake_timeout=agent_config["handshake_timeout"],
        )
    yield
    # Shutdown logic
    if app.state.pod_cache is not None:
        app.state.pod_cache.stop(timeout=5.0)


app = FastAPI(lifespan=lifespan)


@app.get("/health")
def read_health():
    pod_cache = getattr(app.state, "pod_cache", None)
    return {
        "status": "ok",
        "cache_synced": bool(pod_cache is not None and pod_cache.has_synced),
    }


app.include_router(certificates_router, prefix="/api/v1")
