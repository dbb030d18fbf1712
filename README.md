# pullpropagation

Reconciliation logic for pulling Argo CD `Application` resources from a hub
cluster down to managed clusters.

An Application that carries the label
`apps.open-cluster-management.io/pull-to-ocm-managed-cluster` with a true
value and a non-empty annotation
`apps.open-cluster-management.io/ocm-managed-cluster: <cluster>` is wrapped
inside a `ManifestWork` in the namespace of that cluster. The payload is
rewritten to deploy in-cluster, and status feedback rules are attached so that
health, sync, revision and operation state can flow back to the hub. Cluster
conditions from a `MulticlusterApplicationSetReport` are then written back
onto the hub Applications.

Objects are plain dictionaries in the Kubernetes JSON shape. No third-party
libraries are needed at run time.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `pullpropagation.helper` – label and annotation constants, and the functions
  that build the Application payload and the ManifestWork around it.
- `pullpropagation.client` – `InMemoryClient`, a dictionary-backed object store,
  and the errors `NotFoundError`, `AlreadyExistsError` and `ConflictError`.
- `pullpropagation.application_controller` – `ApplicationReconciler`, the event
  filters and `clear_propagation_triggers`.
- `pullpropagation.status_controller` – `ApplicationStatusReconciler`,
  `ClusterCondition` and `build_application_status`.

## Building a ManifestWork

```python
from pullpropagation.helper import (
    generate_manifest_work,
    generate_manifest_work_name,
)

app = {
    "apiVersion": "argoproj.io/v1alpha1",
    "kind": "Application",
    "metadata": {
        "name": "app1",
        "namespace": "argocd",
        "uid": "abcdefghijk",
        "labels": {"apps.open-cluster-management.io/pull-to-ocm-managed-cluster": "true"},
        "annotations": {"apps.open-cluster-management.io/ocm-managed-cluster": "cluster1"},
    },
    "spec": {"destination": {"name": "remote", "server": "https://remote.example.com"}},
}

name = generate_manifest_work_name("app1", "abcdefghijk")   # "app1-abcde"
work = generate_manifest_work(name, "cluster1", app)
```

`generate_manifest_work_name` raises `ValueError` when the UID is shorter than
five characters.

`prepare_application_for_work_payload` builds the payload without touching its
input: the destination name is emptied and the server set to
`https://kubernetes.default.svc`, the namespace comes from the
`apps.open-cluster-management.io/ocm-managed-cluster-app-namespace`
annotation, then the Application's own namespace, then `argocd`
(`generate_app_namespace`). The pull label and the managed-cluster,
app-namespace and `argocd.argoproj.io/skip-reconcile` annotations are dropped;
other labels and annotations, finalizers and the `operation` field are kept.

When the Application has an owner reference to an `ApplicationSet`
(`get_appset_owner_name`), the work is labelled with
`apps.open-cluster-management.io/application-set: "true"` and a SHA-1 hash of
`<namespace>/<appset>` (`generate_manifest_work_appset_hash_label_value`), and
annotated with `<namespace>/<appset>`. The work always records the hub
Application's namespace and name in annotations, which
`contains_valid_manifest_work_hub_application_annotations` checks.

The work uses a server-side-apply update strategy that ignores spoke changes to
`.operation` and to the `argocd.argoproj.io/refresh` annotation.

## Running the reconcilers

Both reconcilers take a client with `get`, `create`, `update` and `delete`.
`InMemoryClient` provides one backed by a dictionary. It assigns a UID and a
resource version on create, raises `ConflictError` when an update carries a
stale resource version, and only marks objects that have finalizers for
deletion; they are removed once an update leaves them without finalizers.

```python
from pullpropagation.client import InMemoryClient
from pullpropagation.application_controller import ApplicationReconciler, should_process_create
from pullpropagation.status_controller import ApplicationStatusReconciler

client = InMemoryClient()
client.create({"apiVersion": "cluster.open-cluster-management.io/v1",
               "kind": "ManagedCluster", "metadata": {"name": "cluster1"}})
client.create(app)

if should_process_create(app):
    ApplicationReconciler(client).reconcile("argocd", "app1")

ApplicationStatusReconciler(client).reconcile("argocd", "report-1")
```

`ApplicationReconciler.reconcile(namespace, name)`:

- does nothing when the Application is gone, or when its ManagedCluster is
  labelled `local-cluster: "true"` (`is_local_cluster`);
- when the Application is being deleted, removes the
  `resources-finalizer.argocd.argoproj.io` finalizer, deletes the ManifestWork
  if there is one, and updates the Application;
- otherwise raises `NotFoundError` if the ManagedCluster does not exist,
  creates or updates the ManifestWork, and then clears the `operation` field
  and the `argocd.argoproj.io/refresh` annotation
  (`clear_propagation_triggers`), updating the Application only if something
  was removed.

`ApplicationStatusReconciler(client, clock, max_retries)` reads a
`MulticlusterApplicationSetReport`, skips it if it is being deleted, and for
each entry of `statuses.clusterConditions` whose `app` is
`<namespace>/<name>` copies health, sync status, sync revision and operation
phase into the Application's status. A missing `operationStateStartedAt` is
filled from `clock` (UTC now by default). A `Healthy` report first writes
`Progressing` so the transition is visible. Applications owned by an
ApplicationSet get an `AdditionalStatusReport` condition when they have none.
Updates are retried up to `max_retries` times (default 4) on `ConflictError`.
`build_application_status` performs the status merge on its own, without a
client.

## Event filtering

`should_process_create`, `should_process_delete` and `should_process_update`
decide whether an Application event needs reconciling; all require the pull
label and the managed-cluster annotation, and updates that change only
`status` are ignored.

## What this package does not do

There is no connection to a Kubernetes API server, no watch loop and no
command to run: the reconcilers act only when called, against whatever client
they are given, and `InMemoryClient` keeps everything in process memory.
Feeding events through the filters and calling `reconcile` is left to the
caller.