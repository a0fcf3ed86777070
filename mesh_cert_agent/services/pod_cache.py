"""
Label-queryable local mirror of cluster pods.

PodCache keeps an in-memory copy of the pods matching a server side label
selector, fed by a background list-then-watch loop. Readers only ever see
what is currently in the mirror; how stale it is depends on the watch, not
on the caller.
"""

import logging
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from kubernetes import client, watch
from kubernetes.client.exceptions import ApiException

from mesh_cert_agent.core.errors import PodCacheError

logger = logging.getLogger(__name__)

PodKey = Tuple[str, str]

# Client side read timeout on top of the server side watch timeout
WATCH_REQUEST_TIMEOUT_MARGIN = 10


class PodLister(Protocol):
    """Read side of a pod mirror."""

    def list(self, selector: Mapping[str, str]) -> List[client.V1Pod]:
        ...


def pod_key(pod: client.V1Pod) -> PodKey:
    return (pod.metadata.namespace or "", pod.metadata.name or "")


def matches_selector(pod: client.V1Pod, selector: Mapping[str, str]) -> bool:
    """Equality based label match; an empty selector matches every pod."""
    labels = (pod.metadata.labels if pod.metadata else None) or {}
    return all(labels.get(key) == value for key, value in selector.items())


class PodCache:
    """Thread-safe pod mirror kept in sync by a Kubernetes watch."""

    def __init__(
        self,
        core_v1_api: Optional[client.CoreV1Api] = None,
        label_selector: Optional[str] = None,
        watch_timeout: int = 300,
        retry_backoff: float = 5.0,
    ):
        """
        Initialize the cache.

        Args:
            core_v1_api: API used for list and watch calls; None for a static cache
            label_selector: Server side selector limiting which pods are mirrored
            watch_timeout: Seconds before a watch request is recycled by the server
            retry_backoff: Seconds to wait after a failed list or watch
        """
        self._core_v1_api = core_v1_api
        self._label_selector = label_selector
        self._watch_timeout = watch_timeout
        self._retry_backoff = retry_backoff

        self._lock = threading.RLock()
        self._pods: Dict[PodKey, client.V1Pod] = {}
        self._synced = threading.Event()
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._watch: Optional[watch.Watch] = None

    @classmethod
    def from_pods(cls, pods: Iterable[client.V1Pod]) -> "PodCache":
        """Build an already synced cache holding a fixed set of pods."""
        cache = cls()
        cache.replace(pods)
        return cache

    @property
    def has_synced(self) -> bool:
        return self._synced.is_set()

    def start(self) -> None:
        """Start the background list and watch loop."""
        if self._core_v1_api is None:
            raise RuntimeError("PodCache has no Kubernetes API to watch")
        if self._thread is not None and self._thread.is_alive():
            logger.warning("PodCache already running")
            return

        self._stopped.clear()
        self._thread = threading.Thread(
            target=self._run, name="pod-cache-watch", daemon=True
        )
        self._thread.start()
        logger.info(
            f"PodCache started: label_selector={self._label_selector or 'none'}, "
            f"watch_timeout={self._watch_timeout}s"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the watch loop and wait for the thread to exit.

        A watch only notices the stop between events. On a quiet watch the
        thread keeps blocking on the open request until the next event, the
        server side watch timeout, or the client read timeout of
        watch_timeout plus WATCH_REQUEST_TIMEOUT_MARGIN seconds. The thread is
        a daemon, so a bounded `timeout` never holds up shutdown.
        """
        self._stopped.set()
        if self._watch is not None:
            self._watch.stop()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("PodCache stopped")

    def sync(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the first full list has been loaded.

        Returns:
            bool: True when the cache synced within the timeout
        """
        synced = self._synced.wait(timeout)
        if not synced:
            logger.warning(f"PodCache did not sync within {timeout}s")
        return synced

    def list(self, selector: Mapping[str, str]) -> List[client.V1Pod]:
        try:
            with self._lock:
                return [pod for pod in self._pods.values() if matches_selector(pod, selector)]
        except (AttributeError, TypeError) as e:
            raise PodCacheError(f"error listing pods from cache: {e}") from e

    def replace(self, pods: Iterable[client.V1Pod]) -> None:
        """Swap the whole mirror for a fresh list and mark the cache synced."""
        with self._lock:
            self._pods = {pod_key(pod): pod for pod in pods}
        self._synced.set()

    def apply_event(self, event_type: str, pod: client.V1Pod) -> None:
        """Apply one watch event to the mirror."""
        key = pod_key(pod)
        with self._lock:
            if event_type in ("ADDED", "MODIFIED"):
                self._pods[key] = pod
            elif event_type == "DELETED":
                self._pods.pop(key, None)
            else:
                logger.debug(f"Ignoring {event_type} event for pod {key[0]}/{key[1]}")

    def _list_and_watch(self) -> None:
        pod_list = self._core_v1_api.list_pod_for_all_namespaces(
            label_selector=self._label_selector
        )
        self.replace(pod_list.items)
        resource_version = pod_list.metadata.resource_version
        logger.debug(
            f"PodCache listed {len(pod_list.items)} pods at resource version {resource_version}"
        )

        self._watch = watch.Watch()
        for event in self._watch.stream(
            self._core_v1_api.list_pod_for_all_namespaces,
            label_selector=self._label_selector,
            resource_version=resource_version,
            timeout_seconds=self._watch_timeout,
            _request_timeout=self._watch_timeout + WATCH_REQUEST_TIMEOUT_MARGIN,
        ):
            if self._stopped.is_set():
                break
            self.apply_event(event["type"], event["object"])
        self._watch.stop()

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                self._list_and_watch()
            except ApiException as e:
                if e.status == 410:
                    logger.info("Pod watch expired, relisting")
                    continue
                logger.error(
                    f"Kubernetes API error while watching pods: {e}",
                    extra={"label_selector": self._label_selector, "status": e.status},
                )
                self._stopped.wait(self._retry_backoff)
            except Exception as e:
                logger.error(
                    f"Unexpected error while watching pods: {e}",
                    extra={"label_selector": self._label_selector},
                    exc_info=True,
                )
                self._stopped.wait(self._retry_backoff)
