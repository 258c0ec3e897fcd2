"""Mapping of cluster events and node conditions onto infrastructure events."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Union

from kubewire.kube import (
    NODE_DISK_PRESSURE,
    NODE_MEMORY_PRESSURE,
    NODE_PID_PRESSURE,
    NODE_READY,
    ConditionStatus,
    CoreEvent,
    K8sEvent,
    MapperError,
    Node,
    NodeCondition,
    ObjectReference,
    Resolver,
    find_condition,
)
from kubewire.wireformat import Event, Kind, Series, Severity, time_to_unix_nano

CONTAINER_REASON_OOM_KILLED = "OOMKilled"

MESSAGE_LIMIT = 2048


@dataclass(frozen=True)
class _ReasonMapping:
    regarding_kinds: tuple[str, ...]
    kind: Kind


_POD = ("Pod",)

# Every rule is qualified by both the reason and the kind of the regarding
# object: the same reason on another kind of object means something else.
_REASON_MAPPINGS: dict[str, _ReasonMapping] = {
    "BackOff": _ReasonMapping(_POD, Kind.K8S_POD_CRASH),
    "CrashLoop": _ReasonMapping(_POD, Kind.K8S_POD_CRASH),
    "Crashed": _ReasonMapping(_POD, Kind.K8S_POD_CRASH),
    "Unhealthy": _ReasonMapping(_POD, Kind.K8S_POD_CRASH),
    "Failed": _ReasonMapping(_POD, Kind.K8S_POD_CRASH),
    "FailedSync": _ReasonMapping(_POD, Kind.K8S_POD_CRASH),
    "OOMKilling": _ReasonMapping(("Pod", "Node"), Kind.K8S_OOM_KILL),
    CONTAINER_REASON_OOM_KILLED: _ReasonMapping(_POD, Kind.K8S_OOM_KILL),
    "Evicted": _ReasonMapping(_POD, Kind.K8S_EVICTION),
    "FailedScheduling": _ReasonMapping(_POD, Kind.K8S_SCHEDULE_FAIL),
    "ErrImagePull": _ReasonMapping(_POD, Kind.K8S_IMAGE_PULL_FAIL),
    "ImagePullBackOff": _ReasonMapping(_POD, Kind.K8S_IMAGE_PULL_FAIL),
    "InvalidImageName": _ReasonMapping(_POD, Kind.K8S_IMAGE_PULL_FAIL),
    "ErrImageNeverPull": _ReasonMapping(_POD, Kind.K8S_IMAGE_PULL_FAIL),
}

_SEVERITIES: dict[Kind, Severity] = {
    Kind.K8S_POD_CRASH: Severity.ERROR,
    Kind.K8S_OOM_KILL: Severity.ERROR,
    Kind.K8S_EVICTION: Severity.ERROR,
    Kind.K8S_SCHEDULE_FAIL: Severity.ERROR,
    Kind.K8S_IMAGE_PULL_FAIL: Severity.ERROR,
    Kind.K8S_NODE_PRESSURE: Severity.WARNING,
    Kind.K8S_HPA_SCALE: Severity.INFO,
    Kind.K8S_POD_STARTED: Severity.INFO,
    Kind.K8S_POD_TERMINATED: Severity.INFO,
    Kind.K8S_DEPLOY_ROLLOUT: Severity.INFO,
    Kind.DEPLOY_STARTED: Severity.INFO,
    Kind.DEPLOY_SUCCEEDED: Severity.INFO,
    Kind.DEPLOY_FAILED: Severity.ERROR,
    Kind.DEPLOY_CANCELLED: Severity.WARNING,
    Kind.DEPLOY_ROLLED_BACK: Severity.WARNING,
}

_PRESSURE_CONDITIONS = (NODE_MEMORY_PRESSURE, NODE_DISK_PRESSURE, NODE_PID_PRESSURE)


def new_id() -> str:
    """Return a fresh random event id."""
    return str(uuid.uuid4())


def now_unix_nano() -> int:
    return time.time_ns()


def severity_for_kind(kind: Union[Kind, str]) -> Severity:
    """Return the fixed severity of a kind; unknown kinds are warnings."""
    return _SEVERITIES.get(kind, Severity.WARNING)


def match_reason(reason: str, regarding_kind: str) -> Optional[Kind]:
    """Return the kind for a (reason, regarding object kind) pair, or None."""
    mapping = _REASON_MAPPINGS.get(reason)
    if mapping is None:
        return None
    wanted = regarding_kind.casefold()
    if any(k.casefold() == wanted for k in mapping.regarding_kinds):
        return mapping.kind
    return None


def truncate(text: str, limit: int) -> str:
    """Limit ``text`` to ``limit`` UTF-8 bytes, ending clipped text with an ellipsis."""
    raw = text.encode("utf-8")
    if len(raw) <= limit:
        return text
    return raw[: limit - 1].decode("utf-8", errors="ignore") + "\u2026"


def _set_pod_attrs(attrs: dict[str, Any], ref: ObjectReference) -> None:
    if ref.kind.casefold() == "pod" and ref.name:
        attrs["k8s.pod.name"] = ref.name


def _resolve_service(resolver: Resolver, ref: ObjectReference, where: str) -> str:
    try:
        res = resolver.resolve_ref(ref.kind, ref.namespace, ref.name)
    except Exception as exc:
        raise MapperError(f"{where}: resolve {ref.namespace}/{ref.name}: {exc}") from exc
    return res.service_id or ref.name


def _base_attrs(reason: str, ref: ObjectReference, reporting_controller: str) -> dict[str, Any]:
    attrs: dict[str, Any] = {
        "k8s.reason": reason,
        "k8s.resource.kind": ref.kind,
        "k8s.reporting_controller": reporting_controller,
    }
    if ref.namespace:
        attrs["k8s.namespace.name"] = ref.namespace
    _set_pod_attrs(attrs, ref)
    return attrs


def from_k8s_event(resolver: Resolver, event: Optional[K8sEvent]) -> Optional[Event]:
    """Map an events-API event; None when it matches no known rule."""
    if event is None or not event.reason:
        return None
    kind = match_reason(event.reason, event.regarding.kind)
    if kind is None:
        return None

    service_id = _resolve_service(resolver, event.regarding, "from_k8s_event")

    attrs = _base_attrs(event.reason, event.regarding, event.reporting_controller)
    if event.note:
        attrs["k8s.message"] = truncate(event.note, MESSAGE_LIMIT)
    if event.action:
        attrs["k8s.action"] = event.action

    if event.event_time is not None:
        occurred_at = time_to_unix_nano(event.event_time)
    else:
        occurred_at = time_to_unix_nano(event.deprecated_first_timestamp)
    if occurred_at <= 0:
        occurred_at = now_unix_nano()

    series = None
    if event.series is not None and event.series.count >= 2:
        last_at = max(time_to_unix_nano(event.series.last_observed_time), occurred_at)
        series = Series(count=event.series.count, first_at=occurred_at, last_at=last_at)

    return Event(
        id=new_id(),
        kind=kind,
        severity=severity_for_kind(kind),
        occurred_at=occurred_at,
        service_id=service_id,
        attributes=attrs,
        series=series,
    )


def from_core_event(resolver: Resolver, event: Optional[CoreEvent]) -> Optional[Event]:
    """Map a legacy core event; None when it matches no known rule."""
    if event is None or not event.reason:
        return None
    kind = match_reason(event.reason, event.involved_object.kind)
    if kind is None:
        return None

    service_id = _resolve_service(resolver, event.involved_object, "from_core_event")

    attrs = _base_attrs(event.reason, event.involved_object, event.reporting_controller)
    if event.message:
        attrs["k8s.message"] = truncate(event.message, MESSAGE_LIMIT)
    if event.source_component:
        attrs["k8s.source.component"] = event.source_component
    if event.source_host:
        attrs["k8s.node.name"] = event.source_host

    occurred_at = time_to_unix_nano(event.first_timestamp)
    if occurred_at == 0:
        occurred_at = time_to_unix_nano(event.event_time)
    if occurred_at <= 0:
        occurred_at = now_unix_nano()

    series = None
    if event.count >= 2:
        last_at = max(time_to_unix_nano(event.last_timestamp), occurred_at)
        series = Series(count=event.count, first_at=occurred_at, last_at=last_at)
    elif event.series is not None and event.series.count >= 2:
        last_at = max(time_to_unix_nano(event.series.last_observed_time), occurred_at)
        series = Series(count=event.series.count, first_at=occurred_at, last_at=last_at)

    return Event(
        id=new_id(),
        kind=kind,
        severity=severity_for_kind(kind),
        occurred_at=occurred_at,
        service_id=service_id,
        attributes=attrs,
        series=series,
    )


def _is_true(condition: Optional[NodeCondition]) -> bool:
    return condition is not None and condition.status == ConditionStatus.TRUE


def from_node_condition_change(
    old_node: Optional[Node], new_node: Optional[Node]
) -> list[Event]:
    """Emit node pressure events for conditions that just became unhealthy.

    Without a previous state every currently unhealthy condition is reported.
    """
    if new_node is None:
        return []

    out = []
    for condition_type in _PRESSURE_CONDITIONS:
        current = find_condition(new_node.conditions, condition_type)
        if not _is_true(current):
            continue
        if old_node is not None and _is_true(find_condition(old_node.conditions, condition_type)):
            continue
        out.append(_node_pressure_event(new_node, condition_type, current))

    # Ready is inverted: anything but True means the node is unhealthy.
    ready = find_condition(new_node.conditions, NODE_READY)
    if ready is not None and not _is_true(ready):
        was_not_ready = False
        if old_node is not None:
            old_ready = find_condition(old_node.conditions, NODE_READY)
            was_not_ready = old_ready is not None and not _is_true(old_ready)
        if not was_not_ready:
            out.append(_node_pressure_event(new_node, "NotReady", ready))

    return out


def _node_pressure_event(node: Node, reason: str, condition: NodeCondition) -> Event:
    attrs: dict[str, Any] = {
        "k8s.resource.kind": "Node",
        "k8s.node.name": node.name,
        "k8s.reason": reason,
    }
    if condition.reason:
        attrs["k8s.condition.reason"] = condition.reason
    if condition.message:
        attrs["k8s.message"] = truncate(condition.message, MESSAGE_LIMIT)

    occurred_at = time_to_unix_nano(condition.last_transition_time)
    if occurred_at == 0:
        occurred_at = time_to_unix_nano(condition.last_heartbeat_time)
    if occurred_at == 0:
        occurred_at = now_unix_nano()

    return Event(
        id=new_id(),
        kind=Kind.K8S_NODE_PRESSURE,
        severity=severity_for_kind(Kind.K8S_NODE_PRESSURE),
        occurred_at=occurred_at,
        service_id=node.name,
        attributes=attrs,
    )