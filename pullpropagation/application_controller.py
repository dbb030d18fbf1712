"""Reconciler that wraps pull-labelled Applications into ManifestWorks."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .client import InMemoryClient, NotFoundError
from .helper import (
    ANNOTATION_KEY_APP_REFRESH,
    ANNOTATION_KEY_OCM_MANAGED_CLUSTER,
    APPLICATION_KIND,
    MANAGED_CLUSTER_KIND,
    MANIFEST_WORK_KIND,
    RESOURCES_FINALIZER_NAME,
    contains_valid_pull_annotation,
    contains_valid_pull_label,
    generate_manifest_work,
    generate_manifest_work_name,
)

logger = logging.getLogger(__name__)

LOCAL_CLUSTER_LABEL = "local-cluster"


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def _is_pull_application(application: Mapping[str, Any]) -> bool:
    meta = _metadata(application)
    return contains_valid_pull_label(meta.get("labels")) and contains_valid_pull_annotation(
        meta.get("annotations")
    )


def should_process_create(application: Mapping[str, Any]) -> bool:
    """Return True when a created Application is meant to be pulled to a managed cluster."""
    return _is_pull_application(application)


def should_process_delete(application: Mapping[str, Any]) -> bool:
    """Return True when a deleted Application is meant to be pulled to a managed cluster."""
    return _is_pull_application(application)


def should_process_update(
    old_application: Mapping[str, Any], new_application: Mapping[str, Any]
) -> bool:
    """Return True when a pull Application changed outside of its status."""
    old_rest = {key: value for key, value in old_application.items() if key != "status"}
    new_rest = {key: value for key, value in new_application.items() if key != "status"}
    return _is_pull_application(new_application) and old_rest != new_rest


def clear_propagation_triggers(application: dict[str, Any]) -> bool:
    """Drop the operation field and refresh annotation in place.

    Returns True when anything was removed and the Application needs an update.
    """
    needs_update = False
    if "operation" in application:
        del application["operation"]
        needs_update = True

    annotations = (application.get("metadata") or {}).get("annotations")
    if annotations is not None and ANNOTATION_KEY_APP_REFRESH in annotations:
        del annotations[ANNOTATION_KEY_APP_REFRESH]
        needs_update = True

    return needs_update


class ApplicationReconciler:
    """Creates, updates and deletes the ManifestWork carrying an Application."""

    def __init__(self, client: InMemoryClient) -> None:
        self.client = client

    def is_local_cluster(self, cluster_name: str) -> bool:
        """Return True when the named ManagedCluster is labelled as the local cluster."""
        try:
            cluster = self.client.get(MANAGED_CLUSTER_KIND, None, cluster_name)
        except NotFoundError as err:
            logger.error("Failed to find managed cluster: %s, error: %s", cluster_name, err)
            return False

        labels = _metadata(cluster).get("labels") or {}
        if str(labels.get(LOCAL_CLUSTER_LABEL, "")).lower() == "true":
            logger.info("This is local-cluster: %s", cluster_name)
            return True
        return False

    def reconcile(self, namespace: str, name: str) -> None:
        """Bring the ManifestWork for the named Application in line with it."""
        logger.info("reconciling Application %s/%s", namespace, name)

        try:
            application = self.client.get(APPLICATION_KIND, namespace, name)
        except NotFoundError:
            logger.info("Application %s/%s not found", namespace, name)
            return

        meta = application.setdefault("metadata", {})
        cluster_name = (meta.get("annotations") or {}).get(ANNOTATION_KEY_OCM_MANAGED_CLUSTER, "")

        if self.is_local_cluster(cluster_name):
            logger.info("skipping Application with the local-cluster as Managed Cluster")
            return

        work_name = generate_manifest_work_name(meta.get("name", ""), meta.get("uid", ""))

        if meta.get("deletionTimestamp"):
            self._finalize(application, work_name, cluster_name)
            return

        # the ManagedCluster has to exist
        self.client.get(MANAGED_CLUSTER_KIND, None, cluster_name)

        logger.info("generating ManifestWork for Application")
        work = generate_manifest_work(work_name, cluster_name, application)

        try:
            existing = self.client.get(MANIFEST_WORK_KIND, cluster_name, work_name)
        except NotFoundError:
            self.client.create(work)
        else:
            existing_meta = existing.setdefault("metadata", {})
            existing_meta["annotations"] = work["metadata"]["annotations"]
            existing_meta["labels"] = work["metadata"]["labels"]
            existing["spec"] = work["spec"]
            self.client.update(existing)

        if clear_propagation_triggers(application):
            self.client.update(application)

        logger.info("done reconciling Application")

    def _finalize(self, application: dict[str, Any], work_name: str, cluster_name: str) -> None:
        meta = application["metadata"]
        finalizers = meta.get("finalizers")
        if finalizers:
            meta["finalizers"] = [f for f in finalizers if f != RESOURCES_FINALIZER_NAME]

        try:
            work = self.client.get(MANIFEST_WORK_KIND, cluster_name, work_name)
        except NotFoundError:
            self.client.update(application)
            return

        self.client.delete(work)
        self.client.update(application)