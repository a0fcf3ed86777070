"""Unit tests for the watch backed pod cache."""

import time
import pytest
from unittest.mock import MagicMock, patch

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from mesh_cert_agent.core.errors import PodCacheError
from mesh_cert_agent.services.pod_cache import PodCache, matches_selector
from tests.fixtures.k8s_fixtures import identity_labels, make_pod


def pod_list(pods, resource_version="100"):
    return client.V1PodList(
        items=pods, metadata=client.V1ListMeta(resource_version=resource_version)
    )


class TestMatchesSelector:
    def test_matching_labels(self):
        pod = make_pod(labels={**identity_labels(), "app": "x"})

        assert matches_selector(pod, identity_labels())

    def test_different_value(self):
        pod = make_pod(labels=identity_labels("destination"))

        assert not matches_selector(pod, identity_labels())

    def test_pod_without_labels(self):
        assert not matches_selector(make_pod(labels=None), identity_labels())

    def test_empty_selector_matches_all(self):
        assert matches_selector(make_pod(labels=None), {})


class TestPodCacheStore:
    def test_from_pods_is_synced(self):
        cache = PodCache.from_pods([make_pod(labels=identity_labels())])

        assert cache.has_synced
        assert cache.sync(0)

    def test_new_cache_is_not_synced(self):
        cache = PodCache()

        assert not cache.has_synced
        assert not cache.sync(0.01)
        assert cache.list({}) == []

    def test_list_filters_by_selector(self):
        identity = make_pod(labels=identity_labels())
        destination = make_pod(name="linkerd-destination", labels=identity_labels("destination"))
        cache = PodCache.from_pods([identity, destination])

        assert cache.list(identity_labels()) == [identity]

    def test_apply_events(self):
        cache = PodCache.from_pods([])
        pod = make_pod(labels=identity_labels(), phase="Pending")
        running = make_pod(labels=identity_labels(), phase="Running")

        cache.apply_event("ADDED", pod)
        assert cache.list(identity_labels()) == [pod]

        cache.apply_event("MODIFIED", running)
        assert cache.list(identity_labels()) == [running]

        cache.apply_event("BOOKMARK", pod)
        assert cache.list(identity_labels()) == [running]

        cache.apply_event("DELETED", running)
        assert cache.list(identity_labels()) == []

    def test_same_name_in_other_namespace_is_distinct(self):
        cache = PodCache.from_pods(
            [
                make_pod(namespace="linkerd", labels=identity_labels()),
                make_pod(namespace="linkerd-staging", labels=identity_labels()),
            ]
        )

        assert len(cache.list(identity_labels())) == 2

    def test_replace_drops_missing_pods(self):
        cache = PodCache.from_pods([make_pod(name="old", labels=identity_labels())])
        new = make_pod(name="new", labels=identity_labels())

        cache.replace([new])

        assert cache.list(identity_labels()) == [new]

    def test_corrupt_entry_raises_cache_error(self):
        cache = PodCache.from_pods([make_pod(labels=identity_labels())])
        cache._pods[("linkerd", "bad")] = object()

        with pytest.raises(PodCacheError):
            cache.list(identity_labels())


class TestPodCacheWatch:
    def test_start_without_api_fails(self):
        with pytest.raises(RuntimeError):
            PodCache().start()

    def test_lists_then_applies_watch_events(self):
        core_v1_api = MagicMock()
        listed = make_pod(name="listed", labels=identity_labels())
        added = make_pod(name="added", labels=identity_labels())
        core_v1_api.list_pod_for_all_namespaces.return_value = pod_list([listed])

        cache = PodCache(core_v1_api, label_selector="linkerd.io/control-plane-component", retry_backoff=0.01)

        with patch("mesh_cert_agent.services.pod_cache.watch.Watch") as mock_watch_class:
            mock_watch = mock_watch_class.return_value

            def stream(*args, **kwargs):
                yield {"type": "ADDED", "object": added}
                yield {"type": "DELETED", "object": listed}
                cache._stopped.set()
                yield {"type": "ADDED", "object": make_pod(name="ignored", labels=identity_labels())}

            mock_watch.stream.side_effect = stream

            cache.start()
            assert cache.sync(5)
            cache._thread.join(5)

        assert [p.metadata.name for p in cache.list(identity_labels())] == ["added"]
        core_v1_api.list_pod_for_all_namespaces.assert_called_with(
            label_selector="linkerd.io/control-plane-component"
        )
        _, kwargs = mock_watch.stream.call_args
        assert kwargs["resource_version"] == "100"
        assert kwargs["label_selector"] == "linkerd.io/control-plane-component"
        assert kwargs["timeout_seconds"] == 300
        assert kwargs["_request_timeout"] > kwargs["timeout_seconds"]
        cache.stop(timeout=1)

    def test_relists_after_expired_watch(self):
        core_v1_api = MagicMock()
        first = make_pod(name="first", labels=identity_labels())
        second = make_pod(name="second", labels=identity_labels())
        core_v1_api.list_pod_for_all_namespaces.side_effect = [
            pod_list([first], "1"),
            pod_list([second], "2"),
        ]
        cache = PodCache(core_v1_api, retry_backoff=0.01)

        with patch("mesh_cert_agent.services.pod_cache.watch.Watch") as mock_watch_class:
            calls = []

            def stream(*args, **kwargs):
                calls.append(kwargs["resource_version"])
                if len(calls) == 1:
                    raise ApiException(status=410, reason="Gone")
                cache._stopped.set()
                return iter([])

            mock_watch_class.return_value.stream.side_effect = stream

            cache.start()
            cache._thread.join(5)

        assert calls == ["1", "2"]
        assert [p.metadata.name for p in cache.list(identity_labels())] == ["second"]

    def test_api_error_is_retried_after_backoff(self):
        core_v1_api = MagicMock()
        pod = make_pod(labels=identity_labels())
        core_v1_api.list_pod_for_all_namespaces.side_effect = [
            ApiException(status=403, reason="Forbidden"),
            pod_list([pod]),
        ]
        cache = PodCache(core_v1_api, retry_backoff=0.01)

        with patch("mesh_cert_agent.services.pod_cache.watch.Watch") as mock_watch_class:

            def stream(*args, **kwargs):
                cache._stopped.set()
                return iter([])

            mock_watch_class.return_value.stream.side_effect = stream

            cache.start()
            assert cache.sync(5)
            cache._thread.join(5)

        assert core_v1_api.list_pod_for_all_namespaces.call_count == 2
        assert cache.list(identity_labels()) == [pod]

    def test_stop_interrupts_backoff(self):
        core_v1_api = MagicMock()
        core_v1_api.list_pod_for_all_namespaces.side_effect = ApiException(status=500, reason="boom")
        cache = PodCache(core_v1_api, retry_backoff=60)

        cache.start()
        time.sleep(0.05)
        started = time.monotonic()
        cache.stop(timeout=5)

        assert time.monotonic() - started < 5
        assert not cache.has_synced

    def test_error_raised_by_watch_stream_is_retried(self):
        core_v1_api = MagicMock()
        pod = make_pod(labels=identity_labels())
        core_v1_api.list_pod_for_all_namespaces.return_value = pod_list([pod])
        cache = PodCache(core_v1_api, retry_backoff=0.01)

        with patch("mesh_cert_agent.services.pod_cache.watch.Watch") as mock_watch_class:
            calls = []

            def stream(*args, **kwargs):
                calls.append(kwargs["resource_version"])
                if len(calls) == 1:
                    raise ApiException(status=500, reason="Internal Server Error")
                cache._stopped.set()
                return iter([])

            mock_watch_class.return_value.stream.side_effect = stream

            cache.start()
            cache._thread.join(5)

        assert len(calls) == 2
        assert core_v1_api.list_pod_for_all_namespaces.call_count == 2
        assert cache.list(identity_labels()) == [pod]
