"""
Progress marker storage on runner pod annotations.

Markers are written with an optimistic merge patch: the pod as read is kept
untouched, the new annotation goes onto a deep copy, and the patch sent is the
diff between the two plus the original resourceVersion. If anything else
updated the pod in between, the API server answers 409 and nothing is written.
"""

import asyncio
import copy
import logging
from typing import Any, Dict, Optional, Tuple

import kubernetes
import urllib3
from kubernetes.client import ApiException, CoreV1Api, V1Pod

from .errors import MarkerPatchError

logger = logging.getLogger(__name__)

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


def create_core_v1_api() -> CoreV1Api:
    """Return a CoreV1Api using in-cluster config, falling back to the local kubeconfig."""
    try:
        kubernetes.config.load_incluster_config()
        logger.info("Loaded in-cluster kube-config")
    except kubernetes.config.config_exception.ConfigException:
        kubernetes.config.load_kube_config()
        logger.info("Loaded kube-config from local file")
    return CoreV1Api()


def _annotations(pod: V1Pod) -> Dict[str, str]:
    if pod.metadata is None or pod.metadata.annotations is None:
        return {}
    return pod.metadata.annotations


def annotation_merge_patch(original: V1Pod, updated: V1Pod) -> Dict[str, Any]:
    """
    JSON merge patch turning ``original``'s annotations into ``updated``'s.

    Removed keys map to None as merge patch requires. The original
    resourceVersion is included so the server rejects the patch if the pod
    moved on since it was read.
    """
    before = _annotations(original)
    after = _annotations(updated)

    changed: Dict[str, Optional[str]] = {k: v for k, v in after.items() if before.get(k) != v}
    for k in before:
        if k not in after:
            changed[k] = None

    metadata: Dict[str, Any] = {"annotations": changed}
    if original.metadata is not None and original.metadata.resource_version:
        metadata["resourceVersion"] = original.metadata.resource_version
    return {"metadata": metadata}


class PodAnnotationStore:
    """Reads and conditionally writes progress markers on runner pods."""

    def __init__(self, core_v1: CoreV1Api):
        self.core_v1 = core_v1

    @staticmethod
    def get_marker(pod: V1Pod, key: str) -> Tuple[str, bool]:
        annotations = _annotations(pod)
        if key not in annotations:
            return "", False
        return annotations[key], True

    async def set_marker_if_absent(self, pod: V1Pod, key: str, value: str) -> V1Pod:
        """
        Write ``key=value`` onto the pod unless the key is already there.

        Returns the pod unchanged (and issues no request) when the marker
        exists, otherwise the patched copy. Raises MarkerPatchError if the
        patch is rejected; the passed-in pod is never mutated.
        """
        _, present = self.get_marker(pod, key)
        if present:
            return pod

        updated = copy.deepcopy(pod)
        if updated.metadata.annotations is None:
            updated.metadata.annotations = {}
        updated.metadata.annotations[key] = value

        body = annotation_merge_patch(pod, updated)
        name = pod.metadata.name
        namespace = pod.metadata.namespace

        try:
            patched = await asyncio.to_thread(
                self.core_v1.patch_namespaced_pod,
                name,
                namespace,
                body,
                _content_type=MERGE_PATCH_CONTENT_TYPE,
            )
        except ApiException as e:
            logger.error(f"Failed to patch pod {namespace}/{name} with {key} annotation: {e.status} {e.reason}")
            raise MarkerPatchError(key, f"{e.status} {e.reason}", status_code=e.status) from e
        except urllib3.exceptions.HTTPError as e:
            # API server unreachable: connection refused, retries exhausted, timeouts
            logger.error(f"Failed to patch pod {namespace}/{name} with {key} annotation: {e!r}")
            raise MarkerPatchError(key, repr(e)) from e

        # Carry the new resourceVersion forward so the next patch preconditions on it
        if isinstance(patched, V1Pod) and patched.metadata is not None and patched.metadata.resource_version:
            updated.metadata.resource_version = patched.metadata.resource_version

        return updated
