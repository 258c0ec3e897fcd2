from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from kubewire.kube import (
    DEPLOYMENT_PROGRESSING,
    NODE_READY,
    POD_RUNNING,
    ConditionStatus,
    CoreEvent,
    DaemonSet,
    Deployment,
    DeploymentCondition,
    HorizontalPodAutoscaler,
    K8sEvent,
    MapperError,
    Node,
    NodeCondition,
    ObjectMeta,
    ObjectReference,
    Pod,
    Resolver,
    StatefulSet,
)
from kubewire.mapper import Mapper
from kubewire.wireformat import Kind


@dataclass
class _Namespace:
    metadata: ObjectMeta


def _mapper(*objects):
    return Mapper(Resolver(objects))


def _error_mapper():
    def fetch(kind, namespace, name):
        raise RuntimeError("etcd unavailable")

    return Mapper(Resolver(fetch=fetch))


def _now():
    return datetime.now(timezone.utc)


def test_none_resolver_raises():
    with pytest.raises(ValueError):
        Mapper(None)


def test_both_none_returns_empty():
    assert _mapper().dispatch(None, None) == []


def test_delete_non_deployment_returns_empty():
    pod = Pod(metadata=ObjectMeta(name="x", namespace="default"))
    assert _mapper().dispatch(pod, None) == []


def test_delete_deployment_without_rollout_returns_empty():
    dep = Deployment(metadata=ObjectMeta(name="web", namespace="prod"))
    assert _mapper().dispatch(dep, None) == []


def test_unknown_type_returns_empty():
    ns = _Namespace(ObjectMeta(name="kube-system"))
    assert _mapper().dispatch(None, ns) == []


def test_k8s_event_unknown_reason_returns_empty():
    ev = K8sEvent(
        metadata=ObjectMeta(name="ev1", namespace="default"),
        reason="SomeReason",
        regarding=ObjectReference(kind="Pod"),
        reporting_controller="kubelet",
    )
    assert _mapper().dispatch(None, ev) == []


def test_core_event_unknown_reason_returns_empty():
    ev = CoreEvent(
        metadata=ObjectMeta(name="ev2", namespace="default"),
        reason="SomeReason",
        involved_object=ObjectReference(kind="Pod"),
        source_component="kubelet",
    )
    assert _mapper().dispatch(None, ev) == []


def test_node_without_old_state_and_no_conditions():
    assert _mapper().dispatch(None, Node(metadata=ObjectMeta(name="node-1"))) == []


def test_node_ready_with_old_state_returns_empty():
    old = Node(metadata=ObjectMeta(name="node-1"))
    new = Node(
        metadata=ObjectMeta(name="node-1"),
        conditions=[NodeCondition(type=NODE_READY, status=ConditionStatus.TRUE)],
    )
    assert _mapper().dispatch(old, new) == []


def test_node_not_ready_routes_to_pressure():
    new = Node(
        metadata=ObjectMeta(name="node-1"),
        conditions=[NodeCondition(type=NODE_READY, status=ConditionStatus.FALSE)],
    )
    out = _mapper().dispatch(None, new)
    assert [e.kind for e in out] == [Kind.K8S_NODE_PRESSURE]


def test_pod_route():
    pod = Pod(metadata=ObjectMeta(name="app", namespace="prod"), phase=POD_RUNNING)
    out = _mapper().dispatch(None, pod)
    assert [e.kind for e in out] == [Kind.K8S_POD_STARTED]


def test_hpa_route_without_old_state():
    hpa = HorizontalPodAutoscaler(metadata=ObjectMeta(name="hpa-1", namespace="prod"))
    assert _mapper().dispatch(None, hpa) == []


def test_hpa_route_with_change():
    old = HorizontalPodAutoscaler(metadata=ObjectMeta(name="hpa-1", namespace="prod"))
    new = HorizontalPodAutoscaler(
        metadata=ObjectMeta(name="hpa-1", namespace="prod"), current_replicas=2
    )
    out = _mapper().dispatch(old, new)
    assert [e.kind for e in out] == [Kind.K8S_HPA_SCALE]


def test_deployment_route_empty():
    dep = Deployment(metadata=ObjectMeta(name="web", namespace="prod"))
    assert _mapper().dispatch(None, dep) == []


def test_deployment_route_combines_rollout_and_deploy_events():
    dep = Deployment(
        metadata=ObjectMeta(
            name="web",
            namespace="prod",
            annotations={"deployment.kubernetes.io/revision": "1"},
        ),
        conditions=[
            DeploymentCondition(
                type=DEPLOYMENT_PROGRESSING,
                status=ConditionStatus.TRUE,
                reason="NewReplicaSetCreated",
            )
        ],
    )
    out = _mapper().dispatch(None, dep)
    assert [e.kind for e in out] == [Kind.K8S_DEPLOY_ROLLOUT, Kind.DEPLOY_STARTED]


def test_statefulset_route_empty():
    sts = StatefulSet(metadata=ObjectMeta(name="db", namespace="prod"))
    assert _mapper().dispatch(None, sts) == []


def test_daemonset_route_empty():
    ds = DaemonSet(metadata=ObjectMeta(name="fluentd", namespace="kube-system"))
    assert _mapper().dispatch(None, ds) == []


def test_delete_deployment_mid_rollout_produces_cancelled():
    dep = Deployment(
        metadata=ObjectMeta(name="web", namespace="prod"),
        conditions=[
            DeploymentCondition(
                type=DEPLOYMENT_PROGRESSING,
                status=ConditionStatus.TRUE,
                reason="ReplicaSetUpdated",
            )
        ],
    )
    out = _mapper().dispatch(dep, None)
    assert len(out) == 1
    assert out[0].kind == Kind.DEPLOY_CANCELLED
    assert out[0].service_id == "web"


def _backoff_k8s_event():
    return K8sEvent(
        reason="BackOff",
        regarding=ObjectReference(kind="Pod", namespace="prod", name="payment-abc"),
        event_time=_now(),
    )


def _backoff_core_event():
    return CoreEvent(
        reason="BackOff",
        involved_object=ObjectReference(kind="Pod", namespace="prod", name="payment-abc"),
        first_timestamp=_now(),
    )


def test_k8s_event_happy_path():
    pod = Pod(metadata=ObjectMeta(name="payment-abc", namespace="prod"))
    out = _mapper(pod).dispatch(None, _backoff_k8s_event())
    assert [e.kind for e in out] == [Kind.K8S_POD_CRASH]


def test_core_event_happy_path():
    pod = Pod(metadata=ObjectMeta(name="payment-abc", namespace="prod"))
    out = _mapper(pod).dispatch(None, _backoff_core_event())
    assert [e.kind for e in out] == [Kind.K8S_POD_CRASH]


def test_k8s_event_resolver_error_propagates():
    with pytest.raises(MapperError):
        _error_mapper().dispatch(None, _backoff_k8s_event())


def test_core_event_resolver_error_propagates():
    with pytest.raises(MapperError):
        _error_mapper().dispatch(None, _backoff_core_event())