# kubewire

`kubewire` turns changes to Kubernetes objects into structured incident events
in the v2 wire format. The events can then be put into an ingest batch.

It works on plain Python data classes, defined in `kubewire.kube`, that
describe the objects it reads:

- `K8sEvent` and `CoreEvent`
- `Node`
- `Pod`
- `HorizontalPodAutoscaler`
- `Deployment`, `StatefulSet` and `DaemonSet`

A `Resolver` maps each object to the service it belongs to.

## Installation

```
pip install kubewire
```

To run the test suite:

```
pip install "kubewire[test]"
pytest
```

## What it produces

Infrastructure events (`K8S_*` kinds):

- **From Kubernetes events:** `K8S_POD_CRASH`, `K8S_OOM_KILL`, `K8S_EVICTION`,
  `K8S_SCHEDULE_FAIL` and `K8S_IMAGE_PULL_FAIL`. A rule matches only when both
  the reason and the kind of the object it refers to match. `BackOff` on a Pod
  is a crash. `BackOff` on a Deployment is ignored.
- **`K8S_NODE_PRESSURE`:** emitted when a node's memory, disk or PID pressure
  condition turns true, or when its Ready condition stops being true.
- **`K8S_HPA_SCALE`:** emitted when an autoscaler's current replica count
  changes. The reason is `ScaleUp` or `ScaleDown`.
- **`K8S_POD_STARTED` and `K8S_POD_TERMINATED`:** emitted on pod phase changes.
  A failed pod with an OOM-killed container is reported as `K8S_OOM_KILL`
  instead.
- **`K8S_DEPLOY_ROLLOUT`:** emitted when a deployment's rollout status changes.
  The status is one of `progressing`, `complete`, `failed` or `unknown`.

Deployment lifecycle events (`DEPLOY_*` kinds):

- `DEPLOY_STARTED`, `DEPLOY_SUCCEEDED` and `DEPLOY_FAILED` for Deployments.
  StatefulSets and DaemonSets give only `DEPLOY_STARTED` and `DEPLOY_SUCCEEDED`.
- `DEPLOY_CANCELLED` when a Deployment is scaled to zero during a rollout, or is
  deleted while a rollout is in progress.
- `DEPLOY_ROLLED_BACK` when the revision goes down, or when a new change-cause
  mentions a rollback. In that case it is the only event reported for the change.

Each event has:

- a random UUID as its id;
- a fixed severity for its kind (`severity_for_kind`);
- `occurred_at` in Unix nanoseconds.

Repeated Kubernetes events carry a `Series` with the count and the first and
last times.

## Usage

Build a `Mapper` around a `Resolver`. Then pass it the previous and current
state of each object your watch reports:

- for an add, pass `None` as `old`;
- for a delete, pass `None` as `new`.

```python
from kubewire.kube import (
    ConditionStatus, Deployment, DeploymentCondition, ObjectMeta, Resolver,
)
from kubewire.mapper import Mapper

mapper = Mapper(Resolver())

old = Deployment(
    metadata=ObjectMeta(name="web", namespace="prod",
                        annotations={"deployment.kubernetes.io/revision": "3"}),
    replicas=3,
    conditions=[DeploymentCondition("Progressing", ConditionStatus.TRUE,
                                    "NewReplicaSetAvailable")],
)
new = Deployment(
    metadata=ObjectMeta(name="web", namespace="prod",
                        annotations={"deployment.kubernetes.io/revision": "4"}),
    replicas=3,
    conditions=[DeploymentCondition("Progressing", ConditionStatus.TRUE,
                                    "NewReplicaSetCreated")],
)

for event in mapper.dispatch(old, new):
    print(event.kind, event.service_id, event.attributes)
```

An object type that the mapper does not handle gives an empty list.

### Service identity

`Resolver(objects=(), fetch=None)` looks objects up in one of two ways:

- with `fetch(kind, namespace, name)`, when given;
- otherwise, among the objects passed to it.

An object's service id comes from its `kubewire.io/service-id` annotation
(`kube.SERVICE_ID_ANNOTATION`). The owner is its first owner reference. When
no service id is found, the object's own name is used. If the lookup raises,
the mapping functions raise `MapperError`.

### Single-purpose functions

The mapping functions can also be called on their own:

- `kubewire.events`: `from_k8s_event`, `from_core_event`,
  `from_node_condition_change`, `match_reason`, `severity_for_kind`, `truncate`.
- `kubewire.workloads`: `from_hpa_scale`, `from_pod_status_change`,
  `from_deployment_rollout`, `deployment_rollout_status`.
- `kubewire.deployment`: `from_deployment_change`, `from_deployment_delete`,
  `from_statefulset_change`, `from_daemonset_change`, plus the revision helpers
  `parse_revision`, `revision_attr`, `revision_less`, `is_rollback` and
  `spec_replicas`.

## Building a batch

`kubewire.wireformat` defines the payload types: `IngestBatch`, `Resource`,
`Agent`, `AgentTelemetry`, `Event` and `Series`. They serialise with
`to_dict()`, and `Resource`, `Event` and `IngestBatch` also have `to_json()`.
The JSON output follows these rules:

- the resource is a flat object of string attributes;
- numeric attributes stay JSON numbers;
- empty attributes, a missing series and zero telemetry fields are left out.

`Resource.from_dict` and `Resource.from_json` read a resource back. They
raise `ValueError` for anything that is not an object of strings.

`kind_domain` classifies a kind by its prefix:

- `K8S_` and `CLOUD_` are infrastructure;
- `DEPLOY_` is deployment;
- `INCIDENT_` is incident;
- anything else is application.

```python
from kubewire.wireformat import Agent, AgentType, CaptureMode, IngestBatch, Resource

batch = IngestBatch(
    resource=Resource({"k8s.cluster.name": "prod"}),
    agent=Agent(type=AgentType.K8S_OPERATOR, version="0.1.0", workspace_id="ws_demo"),
    capture_mode=CaptureMode.SKELETON,
    flushed_at=1733103000000000000,
    events=mapper.dispatch(old, new),
)
payload = batch.to_json()
```

## Metrics

`kubewire.metrics` provides in-process `Counter`, `Gauge` and `Histogram`
types and a `Registry`. It also has the helpers `exponential_buckets` and
`linear_buckets`.

Labelled metrics are split with `labels(...)`. `Registry.gather()` returns
metric families sorted by name. It leaves out labelled metrics that have no
children yet.

The module-level `REGISTRY` holds the operator's standard metrics:

- events sent, dropped and filtered;
- flush latency and batch size;
- topology reports;
- watched workloads;
- matched, ghost and unmatched services;
- reconciliation duration;
- informer cache size;
- leader status.

## What it does not do

`kubewire` is a library of pure mapping functions and payload types. It does
not:

- connect to a cluster or watch objects;
- send batches over the network;
- serve metrics over HTTP or render them in an exposition text format.

It has no command-line program. Feeding it objects and delivering the events
is up to the caller.