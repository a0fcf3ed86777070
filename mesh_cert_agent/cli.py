"""Command line entry point for the mesh certificate agent."""

import json
import logging
import sys
from typing import Optional

import click
import uvicorn
from dotenv import load_dotenv

from mesh_cert_agent.config import get_agent_config, get_kubeconfig_path
from mesh_cert_agent.core.errors import CertificateDiscoveryError
from mesh_cert_agent.services.certificates import CertificatesClient
from mesh_cert_agent.services.k8s_client import initialize_kubernetes_client
from mesh_cert_agent.services.pod_cache import PodCache

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(package_name="mesh-cert-agent")
@click.option("--log-level", default=None, help="Log level (overrides MESH_CERT_AGENT_LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]):
    """Report the identity component's trust anchors and issuer chain."""
    load_dotenv()
    ctx.obj = get_agent_config()
    if log_level:
        ctx.obj["log_level"] = log_level.upper()
    logging.basicConfig(
        level=ctx.obj["log_level"],
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@cli.command()
@click.option("--kubeconfig", default=None, help="Path to kubeconfig (defaults to KUBECONFIG)")
@click.option("--sync-timeout", type=float, default=None, help="Seconds to wait for the pod cache")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "pem"]),
    default="json",
    show_default=True,
)
@click.pass_obj
def fetch(agent_config: dict, kubeconfig: Optional[str], sync_timeout: Optional[float], output_format: str):
    """Run one certificate discovery and print the result."""
    core_v1_api = initialize_kubernetes_client(kubeconfig or get_kubeconfig_path())
    if core_v1_api is None:
        raise click.ClickException("Kubernetes client not available")

    pod_cache = PodCache(
        core_v1_api,
        label_selector=agent_config["label_selector"],
        watch_timeout=agent_config["watch_timeout"],
    )
    pod_cache.start()
    try:
        timeout = sync_timeout if sync_timeout is not None else agent_config["cache_sync_timeout"]
        if not pod_cache.sync(timeout):
            raise click.ClickException(f"pod cache did not sync within {timeout}s")

        certificates_client = CertificatesClient(
            pod_cache,
            connect_timeout=agent_config["connect_timeout"],
            handshake_timeout=agent_config["handshake_timeout"],
        )
        try:
            certs = certificates_client.get_control_plane_certs()
        except CertificateDiscoveryError as e:
            raise click.ClickException(str(e))
    finally:
        pod_cache.stop(timeout=5.0)

    if output_format == "pem":
        click.echo(certs.roots.raw.decode("utf-8"), nl=False)
        click.echo(certs.issuer_crt_chain.raw.decode("ascii"), nl=False)
    else:
        click.echo(json.dumps(certs.model_dump(mode="json"), indent=2))


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=8001, show_default=True)
def serve(host: str, port: int):
    """Serve the certificate API over HTTP."""
    uvicorn.run("mesh_cert_agent.main:app", host=host, port=port)


if __name__ == "__main__":
    cli()
