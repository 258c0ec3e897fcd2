import copy
from datetime import datetime, timedelta, timezone

import pytest

from kubewire.events import (
    from_core_event,
    from_k8s_event,
    from_node_condition_change,
    match_reason,
    severity_for_kind,
    truncate,
)
from kubewire.kube import (
    NODE_MEMORY_PRESSURE,
    NODE_READY,
    ConditionStatus,
    CoreEvent,
    EventSeries,
    K8sEvent,
    MapperError,
    Node,
    NodeCondition,
    ObjectMeta,
    ObjectReference,
    Pod,
    Resolver,
)
from kubewire.wireformat import Kind, Severity, time_to_unix_nano


def _now():
    return datetime.now(timezone.utc)


@pytest.fixture
def resolver():
    pod = Pod(metadata=ObjectMeta(name="payment-abc", namespace="prod"))
    return Resolver(objects=[pod])


def _failing_resolver():
    def fetch(kind, namespace, name):
        raise ConnectionError("etcd unavailable")

    return Resolver(fetch=fetch)


@pytest.mark.parametrize(
    "reason, regarding_kind, want_kind",
    [
        ("OOMKilling", "Pod", Kind.K8S_OOM_KILL),
        ("BackOff", "Pod", Kind.K8S_POD_CRASH),
        ("Evicted", "Pod", Kind.K8S_EVICTION),
        ("FailedScheduling", "Pod", Kind.K8S_SCHEDULE_FAIL),
        ("ErrImagePull", "Pod", Kind.K8S_IMAGE_PULL_FAIL),
        ("ImagePullBackOff", "Pod", Kind.K8S_IMAGE_PULL_FAIL),
        ("BackOff", "Deployment", None),
        ("Evicted", "Node", None),
        ("FailedScheduling", "ReplicaSet", None),
        ("ThisReasonDoesNotExist", "Pod", None),
    ],
)
def test_from_k8s_event_reason_mappings(resolver, reason, regarding_kind, want_kind):
    ev = K8sEvent(
        reason=reason,
        regarding=ObjectReference(kind=regarding_kind, namespace="prod", name="payment-abc"),
        event_time=_now(),
    )
    out = from_k8s_event(resolver, ev)
    if want_kind is None:
        assert out is None
    else:
        assert out.kind == want_kind
        assert out.id
        assert out.occurred_at > 0
        assert out.attributes["k8s.reason"] == reason
        assert out.service_id == "payment-abc"


def test_from_k8s_event_series_deduplication(resolver):
    first = _now() - timedelta(seconds=30)
    ev = K8sEvent(
        reason="OOMKilling",
        regarding=ObjectReference(kind="Pod", namespace="prod", name="payment-abc"),
        event_time=first,
        series=EventSeries(count=5, last_observed_time=_now()),
    )
    out = from_k8s_event(resolver, ev)
    assert out.series is not None
    assert out.series.count == 5
    assert out.occurred_at == out.series.first_at
    assert out.series.last_at >= out.series.first_at


def test_from_k8s_event_no_series_when_count_one(resolver):
    ev = K8sEvent(
        reason="OOMKilling",
        regarding=ObjectReference(kind="Pod", namespace="prod", name="payment-abc"),
        event_time=_now(),
        series=EventSeries(count=1),
    )
    assert from_k8s_event(resolver, ev).series is None


def test_from_k8s_event_both_timestamps_zero_falls_back_to_now(resolver):
    ev = K8sEvent(reason="OOMKilling", regarding=ObjectReference(kind="Pod", namespace="prod", name="p"))
    assert from_k8s_event(resolver, ev).occurred_at > 0


def test_from_k8s_event_resolver_error_raises():
    ev = K8sEvent(
        reason="BackOff",
        regarding=ObjectReference(kind="Pod", namespace="prod", name="payment-abc"),
        event_time=_now(),
    )
    with pytest.raises(MapperError):
        from_k8s_event(_failing_resolver(), ev)


def test_from_k8s_event_note_and_action_attributes(resolver):
    ev = K8sEvent(
        reason="BackOff",
        regarding=ObjectReference(kind="Pod", namespace="prod", name="payment-abc"),
        note="Back-off restarting failed container",
        action="Restart",
        reporting_controller="kubelet",
        event_time=_now(),
    )
    out = from_k8s_event(resolver, ev)
    assert out.attributes["k8s.message"] == "Back-off restarting failed container"
    assert out.attributes["k8s.action"] == "Restart"
    assert out.attributes["k8s.reporting_controller"] == "kubelet"
    assert out.attributes["k8s.pod.name"] == "payment-abc"
    assert out.attributes["k8s.namespace.name"] == "prod"


def test_from_core_event_none_returns_none(resolver):
    assert from_core_event(resolver, None) is None


def test_from_core_event_empty_reason_returns_none(resolver):
    ev = CoreEvent(involved_object=ObjectReference(kind="Pod"))
    assert from_core_event(resolver, ev) is None


def test_from_core_event_unknown_reason_returns_none(resolver):
    ev = CoreEvent(reason="SomethingUnknown", involved_object=ObjectReference(kind="Pod"))
    assert from_core_event(resolver, ev) is None


def test_from_core_event_with_source_attrs(resolver):
    ev = CoreEvent(
        reason="BackOff",
        involved_object=ObjectReference(kind="Pod", namespace="prod", name="web-1"),
        source_component="kubelet",
        source_host="worker-1",
        first_timestamp=_now(),
    )
    out = from_core_event(resolver, ev)
    assert out.attributes["k8s.source.component"] == "kubelet"
    assert out.attributes["k8s.node.name"] == "worker-1"


def test_from_core_event_falls_back_to_event_time(resolver):
    event_time = datetime(2025, 3, 1, 10, 0, 0, tzinfo=timezone.utc)
    ev = CoreEvent(
        reason="BackOff",
        involved_object=ObjectReference(kind="Pod", namespace="prod", name="web-1"),
        event_time=event_time,
    )
    assert from_core_event(resolver, ev).occurred_at == time_to_unix_nano(event_time)


def test_from_core_event_legacy_count(resolver):
    ev = CoreEvent(
        reason="BackOff",
        involved_object=ObjectReference(kind="Pod", namespace="prod", name="payment-abc"),
        first_timestamp=_now() - timedelta(minutes=1),
        last_timestamp=_now(),
        count=3,
    )
    out = from_core_event(resolver, ev)
    assert out.kind == Kind.K8S_POD_CRASH
    assert out.series is not None
    assert out.series.count == 3
    assert out.series.first_at == out.occurred_at


def test_from_core_event_both_timestamps_zero_falls_back_to_now(resolver):
    ev = CoreEvent(reason="BackOff", involved_object=ObjectReference(kind="Pod", namespace="prod", name="p"))
    assert from_core_event(resolver, ev).occurred_at > 0


def test_from_core_event_resolver_error_raises():
    ev = CoreEvent(
        reason="BackOff",
        involved_object=ObjectReference(kind="Pod", namespace="prod", name="payment-abc"),
        first_timestamp=_now(),
    )
    with pytest.raises(MapperError):
        from_core_event(_failing_resolver(), ev)


def test_node_condition_emits_on_transition():
    old = Node(
        metadata=ObjectMeta(name="node-1"),
        conditions=[NodeCondition(NODE_MEMORY_PRESSURE, ConditionStatus.FALSE)],
    )
    new = Node(
        metadata=ObjectMeta(name="node-1"),
        conditions=[
            NodeCondition(NODE_MEMORY_PRESSURE, ConditionStatus.TRUE, last_transition_time=_now())
        ],
    )
    out = from_node_condition_change(old, new)
    assert len(out) == 1
    assert out[0].kind == Kind.K8S_NODE_PRESSURE
    assert out[0].service_id == "node-1"


def test_node_condition_no_transition():
    node = Node(
        metadata=ObjectMeta(name="node-1"),
        conditions=[NodeCondition(NODE_MEMORY_PRESSURE, ConditionStatus.TRUE)],
    )
    assert from_node_condition_change(node, node) == []


def test_node_condition_none_new_node():
    assert from_node_condition_change(None, None) == []


def test_node_not_ready_emits_event():
    old = Node(
        metadata=ObjectMeta(name="node-2"),
        conditions=[NodeCondition(NODE_READY, ConditionStatus.TRUE)],
    )
    new = Node(
        metadata=ObjectMeta(name="node-2"),
        conditions=[
            NodeCondition(
                NODE_READY,
                ConditionStatus.FALSE,
                reason="KubeletNotReady",
                message="container runtime not responding",
                last_transition_time=_now(),
            )
        ],
    )
    out = from_node_condition_change(old, new)
    assert len(out) == 1
    assert out[0].kind == Kind.K8S_NODE_PRESSURE
    assert out[0].attributes["k8s.reason"] == "NotReady"
    assert out[0].attributes["k8s.condition.reason"] == "KubeletNotReady"
    assert out[0].attributes["k8s.message"] == "container runtime not responding"


def test_node_condition_falls_back_to_heartbeat_time():
    heartbeat = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
    new = Node(
        metadata=ObjectMeta(name="node-4"),
        conditions=[
            NodeCondition(NODE_MEMORY_PRESSURE, ConditionStatus.TRUE, last_heartbeat_time=heartbeat)
        ],
    )
    out = from_node_condition_change(None, new)
    assert len(out) == 1
    assert out[0].occurred_at == time_to_unix_nano(heartbeat)


def test_node_already_not_ready_skipped():
    node = Node(
        metadata=ObjectMeta(name="node-3"),
        conditions=[NodeCondition(NODE_READY, ConditionStatus.FALSE)],
    )
    assert from_node_condition_change(copy.deepcopy(node), node) == []


def test_match_reason_is_case_insensitive_on_kind():
    assert match_reason("BackOff", "pod") == Kind.K8S_POD_CRASH
    assert match_reason("OOMKilling", "Node") == Kind.K8S_OOM_KILL
    assert match_reason("OOMKilled", "Node") is None


@pytest.mark.parametrize(
    "kind, severity",
    [
        (Kind.K8S_POD_CRASH, Severity.ERROR),
        (Kind.K8S_NODE_PRESSURE, Severity.WARNING),
        (Kind.K8S_HPA_SCALE, Severity.INFO),
        (Kind.DEPLOY_FAILED, Severity.ERROR),
        (Kind.DEPLOY_ROLLED_BACK, Severity.WARNING),
        ("CUSTOM", Severity.WARNING),
    ],
)
def test_severity_for_kind(kind, severity):
    assert severity_for_kind(kind) == severity


def test_truncate_short_string_unchanged():
    assert truncate("hello world", 2048) == "hello world"


def test_truncate_exact_max_unchanged():
    s = "a" * 2048
    assert truncate(s, 2048) == s


def test_truncate_exceeds_max_clips_with_ellipsis():
    s = "a" * 2049
    got = truncate(s, 2048)
    assert got.endswith("\u2026")
    assert got.startswith(s[:2047])
    assert got[:-1] == s[:2047]