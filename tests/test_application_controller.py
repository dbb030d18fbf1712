import pytest

from pullpropagation.application_controller import (
    ApplicationReconciler,
    clear_propagation_triggers,
    should_process_create,
    should_process_delete,
    should_process_update,
)
from pullpropagation.client import InMemoryClient, NotFoundError
from pullpropagation.helper import (
    ANNOTATION_KEY_APP_REFRESH,
    ANNOTATION_KEY_OCM_MANAGED_CLUSTER,
    KUBERNETES_INTERNAL_API_SERVER_ADDR,
    LABEL_KEY_PULL,
    RESOURCES_FINALIZER_NAME,
)

NAMESPACE = "default"
CLUSTER = "cluster1"
LOCAL_CLUSTER = "local-cluster"


def make_app(name, cluster=CLUSTER, pull=True, annotations=None, finalizers=None, operation=None):
    annos = {ANNOTATION_KEY_OCM_MANAGED_CLUSTER: cluster}
    annos.update(annotations or {})
    meta = {"name": name, "namespace": NAMESPACE, "annotations": annos}
    if pull:
        meta["labels"] = {LABEL_KEY_PULL: "true"}
    if finalizers:
        meta["finalizers"] = list(finalizers)
    app = {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": meta,
        "spec": {
            "project": "default",
            "source": {"repoURL": "https://example.com/apps.git"},
            "destination": {"server": KUBERNETES_INTERNAL_API_SERVER_ADDR, "namespace": NAMESPACE},
        },
    }
    if operation is not None:
        app["operation"] = operation
    return app


def make_cluster(name, labels=None):
    meta = {"name": name}
    if labels:
        meta["labels"] = labels
    return {"apiVersion": "cluster.open-cluster-management.io/v1", "kind": "ManagedCluster", "metadata": meta}


@pytest.fixture
def client():
    c = InMemoryClient()
    c.create(make_cluster(CLUSTER))
    c.create(make_cluster(LOCAL_CLUSTER, {"local-cluster": "true"}))
    return c


def work_name_for(app):
    return f"{app['metadata']['name']}-{app['metadata']['uid'][:5]}"


def test_predicates_require_pull_label():
    app = make_app("app-1", pull=False)
    assert should_process_create(app) is False
    assert should_process_delete(app) is False
    assert should_process_create(make_app("app-2")) is True
    assert should_process_delete(make_app("app-2")) is True


def test_update_predicate_ignores_status_only_changes():
    old = make_app("app-1")
    new = make_app("app-1")
    new["status"] = {"health": {"status": "Healthy"}}
    assert should_process_update(old, new) is False
    new["spec"]["project"] = "other"
    assert should_process_update(old, new) is True


def test_update_predicate_requires_pull_label_on_new():
    old = make_app("app-1")
    new = make_app("app-1", pull=False)
    new["spec"]["project"] = "other"
    assert should_process_update(old, new) is False


@pytest.mark.parametrize(
    "operation, expected_update",
    [
        ({"sync": {"prune": True}}, True),
        (None, False),
        (
            {
                "info": [{"name": "Reason", "value": "ApplicationSet triggered sync"}],
                "initiatedBy": {"automated": True, "username": "applicationset-controller"},
                "sync": {"prune": True, "dryRun": False, "syncOptions": ["CreateNamespace=true"]},
            },
            True,
        ),
    ],
)
def test_clear_operation_field(operation, expected_update):
    app = {"apiVersion": "argoproj.io/v1alpha1", "kind": "Application", "metadata": {}}
    if operation is not None:
        app["operation"] = operation
    assert clear_propagation_triggers(app) is expected_update
    assert "operation" not in app


@pytest.mark.parametrize(
    "annotations, expected, expected_update",
    [
        ({ANNOTATION_KEY_APP_REFRESH: "normal", "other.annotation": "value"}, {"other.annotation": "value"}, True),
        (
            {"other.annotation": "value", "another.annotation": "another-value"},
            {"other.annotation": "value", "another.annotation": "another-value"},
            False,
        ),
        (None, None, False),
        ({}, {}, False),
        (
            {ANNOTATION_KEY_APP_REFRESH: "hard", "app.annotation": "app-value", "cluster.annotation": "cluster-value"},
            {"app.annotation": "app-value", "cluster.annotation": "cluster-value"},
            True,
        ),
        (
            {ANNOTATION_KEY_APP_REFRESH: "hard", ANNOTATION_KEY_OCM_MANAGED_CLUSTER: "test-cluster"},
            {ANNOTATION_KEY_OCM_MANAGED_CLUSTER: "test-cluster"},
            True,
        ),
    ],
)
def test_clear_refresh_annotation(annotations, expected, expected_update):
    meta = {}
    if annotations is not None:
        meta["annotations"] = dict(annotations)
    app = {"kind": "Application", "metadata": meta}
    assert clear_propagation_triggers(app) is expected_update
    assert app["metadata"].get("annotations") == expected


@pytest.mark.parametrize(
    "operation, annotations, expected_update",
    [
        ({"sync": {"prune": True}}, {ANNOTATION_KEY_APP_REFRESH: "normal", ANNOTATION_KEY_OCM_MANAGED_CLUSTER: "test-cluster"}, True),
        ({"sync": {"prune": True}}, {ANNOTATION_KEY_OCM_MANAGED_CLUSTER: "test-cluster"}, True),
        (None, {ANNOTATION_KEY_APP_REFRESH: "hard", ANNOTATION_KEY_OCM_MANAGED_CLUSTER: "test-cluster"}, True),
        (None, {ANNOTATION_KEY_OCM_MANAGED_CLUSTER: "test-cluster"}, False),
    ],
)
def test_clear_both_triggers(operation, annotations, expected_update):
    app = {"kind": "Application", "metadata": {"annotations": dict(annotations)}}
    if operation is not None:
        app["operation"] = operation
    assert clear_propagation_triggers(app) is expected_update
    assert "operation" not in app
    assert app["metadata"]["annotations"] == {ANNOTATION_KEY_OCM_MANAGED_CLUSTER: "test-cluster"}


def test_is_local_cluster(client):
    reconciler = ApplicationReconciler(client)
    assert reconciler.is_local_cluster(LOCAL_CLUSTER) is True
    assert reconciler.is_local_cluster(CLUSTER) is False
    assert reconciler.is_local_cluster("missing") is False


def test_is_local_cluster_label_is_case_insensitive(client):
    client.create(make_cluster("hub", {"local-cluster": "TRUE"}))
    assert ApplicationReconciler(client).is_local_cluster("hub") is True


def test_create_update_delete_lifecycle(client):
    reconciler = ApplicationReconciler(client)
    app = client.create(make_app("app-2", finalizers=[RESOURCES_FINALIZER_NAME]))
    work_name = work_name_for(app)

    reconciler.reconcile(NAMESPACE, "app-2")
    work = client.get("ManifestWork", CLUSTER, work_name)
    assert work["spec"]["workload"]["manifests"][0]["metadata"]["name"] == "app-2"

    app = client.get("Application", NAMESPACE, "app-2")
    app["spec"] = {
        "project": "somethingelse",
        "source": {"repoURL": "dummy"},
        "destination": {"server": KUBERNETES_INTERNAL_API_SERVER_ADDR, "namespace": NAMESPACE},
    }
    client.update(app)
    reconciler.reconcile(NAMESPACE, "app-2")
    work = client.get("ManifestWork", CLUSTER, work_name)
    assert work["spec"]["workload"]["manifests"][0]["spec"]["project"] == "somethingelse"

    app = client.get("Application", NAMESPACE, "app-2")
    app["operation"] = {"sync": {"syncOptions": ["CreateNamespace=true"]}}
    client.update(app)
    reconciler.reconcile(NAMESPACE, "app-2")
    assert "operation" not in client.get("Application", NAMESPACE, "app-2")
    work = client.get("ManifestWork", CLUSTER, work_name)
    assert work["spec"]["workload"]["manifests"][0]["operation"] == {"sync": {"syncOptions": ["CreateNamespace=true"]}}

    client.delete(client.get("Application", NAMESPACE, "app-2"))
    reconciler.reconcile(NAMESPACE, "app-2")
    with pytest.raises(NotFoundError):
        client.get("ManifestWork", CLUSTER, work_name)
    with pytest.raises(NotFoundError):
        client.get("Application", NAMESPACE, "app-2")


def test_deletion_without_work_removes_finalizer_only(client):
    app = client.create(make_app("app-x", finalizers=[RESOURCES_FINALIZER_NAME, "keep.example/finalizer"]))
    client.delete(app)
    ApplicationReconciler(client).reconcile(NAMESPACE, "app-x")
    stored = client.get("Application", NAMESPACE, "app-x")
    assert stored["metadata"]["finalizers"] == ["keep.example/finalizer"]


def test_local_cluster_gets_no_work(client):
    app = client.create(make_app("app-3", cluster=LOCAL_CLUSTER, finalizers=[RESOURCES_FINALIZER_NAME]))
    ApplicationReconciler(client).reconcile(NAMESPACE, "app-3")
    assert client.list("ManifestWork") == []
    assert client.get("Application", NAMESPACE, "app-3")["metadata"]["uid"] == app["metadata"]["uid"]


def test_refresh_annotation_removed_after_propagation(client):
    client.create(make_app("app-with-refresh", annotations={ANNOTATION_KEY_APP_REFRESH: "normal"}))
    ApplicationReconciler(client).reconcile(NAMESPACE, "app-with-refresh")
    stored = client.get("Application", NAMESPACE, "app-with-refresh")
    assert ANNOTATION_KEY_APP_REFRESH not in stored["metadata"]["annotations"]
    work = client.list("ManifestWork", CLUSTER)[0]
    payload_annos = work["spec"]["workload"]["manifests"][0]["metadata"]["annotations"]
    assert payload_annos[ANNOTATION_KEY_APP_REFRESH] == "normal"


def test_both_triggers_removed(client):
    client.create(
        make_app(
            "app-with-both",
            annotations={ANNOTATION_KEY_APP_REFRESH: "hard"},
            operation={"sync": {"prune": True, "dryRun": False}},
        )
    )
    ApplicationReconciler(client).reconcile(NAMESPACE, "app-with-both")
    stored = client.get("Application", NAMESPACE, "app-with-both")
    assert "operation" not in stored
    assert ANNOTATION_KEY_APP_REFRESH not in stored["metadata"]["annotations"]


def test_no_update_when_no_triggers(client):
    created = client.create(make_app("app-with-neither"))
    ApplicationReconciler(client).reconcile(NAMESPACE, "app-with-neither")
    stored = client.get("Application", NAMESPACE, "app-with-neither")
    assert stored["metadata"]["resourceVersion"] == created["metadata"]["resourceVersion"]
    assert len(client.list("ManifestWork", CLUSTER)) == 1


def test_missing_managed_cluster_raises(client):
    client.create(make_app("app-4", cluster="nowhere"))
    with pytest.raises(NotFoundError):
        ApplicationReconciler(client).reconcile(NAMESPACE, "app-4")
    assert client.list("ManifestWork") == []


def test_missing_application_is_ignored(client):
    ApplicationReconciler(client).reconcile(NAMESPACE, "ghost")
    assert client.list("ManifestWork") == []