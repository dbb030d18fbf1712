"""Building ManifestWork payloads that carry Argo CD Applications to managed clusters."""

from __future__ import annotations

import copy
import hashlib
from collections.abc import Iterable, Mapping
from typing import Any

# Application annotation naming the managed cluster the Application is pulled to.
ANNOTATION_KEY_OCM_MANAGED_CLUSTER = "apps.open-cluster-management.io/ocm-managed-cluster"
# Application annotation naming the namespace on the managed cluster.
ANNOTATION_KEY_OCM_MANAGED_CLUSTER_APP_NAMESPACE = (
    "apps.open-cluster-management.io/ocm-managed-cluster-app-namespace"
)
# Application and ManifestWork annotation naming the parent ApplicationSet.
ANNOTATION_KEY_APPSET = "apps.open-cluster-management.io/hosting-applicationset"
# Application annotation that makes Argo CD skip reconciliation.
ANNOTATION_KEY_APP_SKIP_RECONCILE = "argocd.argoproj.io/skip-reconcile"
# Application annotation that asks Argo CD to refresh the Application.
ANNOTATION_KEY_APP_REFRESH = "argocd.argoproj.io/refresh"
# ManifestWork annotations naming the hub Application.
ANNOTATION_KEY_HUB_APPLICATION_NAMESPACE = "apps.open-cluster-management.io/hub-application-namespace"
ANNOTATION_KEY_HUB_APPLICATION_NAME = "apps.open-cluster-management.io/hub-application-name"
# Application and ManifestWork label marking ApplicationSet ancestry.
LABEL_KEY_APPSET = "apps.open-cluster-management.io/application-set"
# ManifestWork label holding the sha1 of the ApplicationSet namespace and name.
LABEL_KEY_APPSET_HASH = "apps.open-cluster-management.io/application-set-hash"
# Application label that enables wrapping the Application in a ManifestWork.
LABEL_KEY_PULL = "apps.open-cluster-management.io/pull-to-ocm-managed-cluster"
# Finalizer Argo CD uses to clean up an Application's resources.
RESOURCES_FINALIZER_NAME = "resources-finalizer.argocd.argoproj.io"

# Address of the API server as seen from inside the cluster.
KUBERNETES_INTERNAL_API_SERVER_ADDR = "https://kubernetes.default.svc"

APPLICATION_API_VERSION = "argoproj.io/v1alpha1"
APPLICATION_KIND = "Application"
APPLICATIONSET_KIND = "ApplicationSet"
MANIFEST_WORK_API_VERSION = "work.open-cluster-management.io/v1"
MANIFEST_WORK_KIND = "ManifestWork"
MANAGED_CLUSTER_API_VERSION = "cluster.open-cluster-management.io/v1"
MANAGED_CLUSTER_KIND = "ManagedCluster"

DEFAULT_APP_NAMESPACE = "argocd"
MANIFEST_WORK_NAME_UID_LENGTH = 5

_TRUE_STRINGS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_STRINGS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_PAYLOAD_STRIPPED_ANNOTATIONS = frozenset(
    {
        ANNOTATION_KEY_OCM_MANAGED_CLUSTER,
        ANNOTATION_KEY_OCM_MANAGED_CLUSTER_APP_NAMESPACE,
        ANNOTATION_KEY_APP_SKIP_RECONCILE,
    }
)

_FEEDBACK_PATHS = (
    ("healthStatus", ".status.health.status"),
    ("syncStatus", ".status.sync.status"),
    ("operationStateStartedAt", ".status.operationState.startedAt"),
    ("operationStatePhase", ".status.operationState.phase"),
    ("syncRevision", ".status.sync.revision"),
)

IGNORED_SPOKE_FIELDS = (
    ".operation",
    '.metadata.annotations["argocd.argoproj.io/refresh"]',
)


def _parse_bool(value: str) -> bool:
    if value in _TRUE_STRINGS:
        return True
    if value in _FALSE_STRINGS:
        return False
    raise ValueError(f"invalid boolean: {value!r}")


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    return obj.get("metadata") or {}


def contains_valid_pull_label(labels: Mapping[str, str] | None) -> bool:
    """Return True when the pull label is present and parses as a true boolean."""
    if not labels or LABEL_KEY_PULL not in labels:
        return False
    try:
        return _parse_bool(labels[LABEL_KEY_PULL])
    except ValueError:
        return False


def contains_valid_pull_annotation(annotations: Mapping[str, str] | None) -> bool:
    """Return True when the managed-cluster annotation is present and non-empty."""
    if not annotations:
        return False
    return bool(annotations.get(ANNOTATION_KEY_OCM_MANAGED_CLUSTER))


def contains_valid_manifest_work_hub_application_annotations(
    manifest_work: Mapping[str, Any],
) -> bool:
    """Return True when the ManifestWork names its hub Application's namespace and name."""
    annotations = _metadata(manifest_work).get("annotations") or {}
    return bool(annotations.get(ANNOTATION_KEY_HUB_APPLICATION_NAMESPACE)) and bool(
        annotations.get(ANNOTATION_KEY_HUB_APPLICATION_NAME)
    )


def generate_app_namespace(namespace: str | None, annotations: Mapping[str, str] | None) -> str:
    """Pick the Application namespace: annotation, then own namespace, then 'argocd'."""
    custom = (annotations or {}).get(ANNOTATION_KEY_OCM_MANAGED_CLUSTER_APP_NAMESPACE)
    if custom:
        return custom
    if namespace:
        return namespace
    return DEFAULT_APP_NAMESPACE


def generate_manifest_work_name(name: str, uid: str) -> str:
    """Name a ManifestWork after the Application and the first five characters of its UID."""
    if len(uid) < MANIFEST_WORK_NAME_UID_LENGTH:
        raise ValueError(
            f"uid {uid!r} is shorter than {MANIFEST_WORK_NAME_UID_LENGTH} characters"
        )
    return f"{name}-{uid[:MANIFEST_WORK_NAME_UID_LENGTH]}"


def generate_manifest_work_appset_hash_label_value(appset_namespace: str, appset_name: str) -> str:
    """Return the hex sha1 of '<namespace>/<name>' of an ApplicationSet."""
    digest = hashlib.sha1(f"{appset_namespace}/{appset_name}".encode(), usedforsecurity=False)
    return digest.hexdigest()


def get_appset_owner_name(owner_refs: Iterable[Mapping[str, Any]] | None) -> str:
    """Return the name of the first ApplicationSet owner reference, or ''."""
    for ref in owner_refs or ():
        if (
            str(ref.get("apiVersion", "")).lower() == APPLICATION_API_VERSION.lower()
            and str(ref.get("kind", "")).lower() == APPLICATIONSET_KIND.lower()
        ):
            return ref.get("name", "")
    return ""


def prepare_application_for_work_payload(application: Mapping[str, Any]) -> dict[str, Any]:
    """Build the Application that is shipped inside a ManifestWork.

    Metadata is reset, the namespace resolved, the destination forced to the
    in-cluster API server and OCM-specific labels and annotations dropped.
    The input is left untouched.
    """
    meta = _metadata(application)
    source_namespace = meta.get("namespace") or ""
    source_annotations = meta.get("annotations") or {}

    payload_meta: dict[str, Any] = {
        "name": meta.get("name") or "",
        "namespace": generate_app_namespace(source_namespace, source_annotations),
    }
    finalizers = meta.get("finalizers")
    if finalizers is not None:
        payload_meta["finalizers"] = list(finalizers)

    payload: dict[str, Any] = {
        "apiVersion": APPLICATION_API_VERSION,
        "kind": APPLICATION_KIND,
        "metadata": payload_meta,
    }

    operation = application.get("operation")
    if isinstance(operation, dict):
        payload["operation"] = copy.deepcopy(operation)

    spec = application.get("spec")
    if isinstance(spec, dict):
        spec = copy.deepcopy(spec)
        destination = spec.get("destination")
        if isinstance(destination, dict):
            destination["name"] = ""
            destination["server"] = KUBERNETES_INTERNAL_API_SERVER_ADDR
        payload["spec"] = spec

    labels = {
        key: value
        for key, value in (meta.get("labels") or {}).items()
        if key != LABEL_KEY_PULL
    }
    annotations = {
        key: value
        for key, value in source_annotations.items()
        if key not in _PAYLOAD_STRIPPED_ANNOTATIONS
    }

    appset_owner = get_appset_owner_name(meta.get("ownerReferences"))
    if appset_owner:
        labels[LABEL_KEY_APPSET] = "true"
        annotations[ANNOTATION_KEY_APPSET] = f"{source_namespace}/{appset_owner}"

    payload_meta["labels"] = labels
    payload_meta["annotations"] = annotations
    return payload


def generate_manifest_work(
    name: str, namespace: str, application: Mapping[str, Any]
) -> dict[str, Any]:
    """Create the ManifestWork that wraps the Application with status feedback rules."""
    meta = _metadata(application)
    app_namespace = meta.get("namespace") or ""
    app_name = meta.get("name") or ""

    work_labels = {LABEL_KEY_PULL: "true"}
    work_annotations = {
        ANNOTATION_KEY_HUB_APPLICATION_NAMESPACE: app_namespace,
        ANNOTATION_KEY_HUB_APPLICATION_NAME: app_name,
    }

    appset_owner = get_appset_owner_name(meta.get("ownerReferences"))
    if appset_owner:
        work_labels = {
            LABEL_KEY_APPSET: "true",
            LABEL_KEY_APPSET_HASH: generate_manifest_work_appset_hash_label_value(
                app_namespace, appset_owner
            ),
        }
        work_annotations[ANNOTATION_KEY_APPSET] = f"{app_namespace}/{appset_owner}"

    payload = prepare_application_for_work_payload(application)
    payload_meta = payload["metadata"]

    return {
        "apiVersion": MANIFEST_WORK_API_VERSION,
        "kind": MANIFEST_WORK_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": work_labels,
            "annotations": work_annotations,
        },
        "spec": {
            "workload": {"manifests": [payload]},
            "manifestConfigs": [
                {
                    "resourceIdentifier": {
                        "group": "argoproj.io",
                        "resource": "applications",
                        "namespace": payload_meta["namespace"],
                        "name": payload_meta["name"],
                    },
                    "feedbackRules": [
                        {"type": "JSONPaths", "jsonPaths": [{"name": rule, "path": path}]}
                        for rule, path in _FEEDBACK_PATHS
                    ],
                    "updateStrategy": {
                        "type": "ServerSideApply",
                        "serverSideApply": {
                            "force": True,
                            "ignoreFields": [
                                {
                                    "condition": "OnSpokeChange",
                                    "jsonPaths": list(IGNORED_SPOKE_FIELDS),
                                }
                            ],
                        },
                    },
                }
            ],
        },
    }