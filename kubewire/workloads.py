"""Autoscaler, pod lifecycle and deployment rollout events of the infrastructure domain."""

from __future__ import annotations

from typing import Any, Optional

from kubewire.deployment import (
    REASON_NEW_REPLICA_SET_AVAILABLE,
    REASON_PROGRESS_DEADLINE_EXCEEDED,
    revision_attr,
)
from kubewire.events import (
    CONTAINER_REASON_OOM_KILLED,
    new_id,
    now_unix_nano,
    severity_for_kind,
)
from kubewire.kube import (
    DEPLOYMENT_PROGRESSING,
    POD_FAILED,
    POD_RUNNING,
    POD_SUCCEEDED,
    REVISION_ANNOTATION,
    ConditionStatus,
    Deployment,
    HorizontalPodAutoscaler,
    MapperError,
    Pod,
    Resolver,
    find_condition,
)
from kubewire.wireformat import Event, Kind, time_to_unix_nano


def from_hpa_scale(
    old: Optional[HorizontalPodAutoscaler], new: Optional[HorizontalPodAutoscaler]
) -> Optional[Event]:
    """Emit a scale event when the current replica count changed; None otherwise.

    Without a previous state nothing is reported: the current state is the baseline.
    """
    if new is None or old is None:
        return None
    if old.current_replicas == new.current_replicas:
        return None

    reason = "ScaleDown" if new.current_replicas < old.current_replicas else "ScaleUp"
    attrs: dict[str, Any] = {
        "k8s.hpa.name": new.name,
        "k8s.namespace.name": new.namespace,
        "k8s.hpa.current_replicas": int(new.current_replicas),
        "k8s.hpa.desired_replicas": int(new.desired_replicas),
        "k8s.reason": reason,
    }
    if new.min_replicas is not None:
        attrs["k8s.hpa.min_replicas"] = int(new.min_replicas)
    attrs["k8s.hpa.max_replicas"] = int(new.max_replicas)

    service_id = new.scale_target_name or new.name

    if new.last_scale_time is not None:
        occurred_at = time_to_unix_nano(new.last_scale_time)
    else:
        occurred_at = now_unix_nano()

    return Event(
        id=new_id(),
        kind=Kind.K8S_HPA_SCALE,
        severity=severity_for_kind(Kind.K8S_HPA_SCALE),
        occurred_at=occurred_at,
        service_id=service_id,
        attributes=attrs,
    )


def _container_oom_killed(pod: Pod) -> bool:
    return any(
        cs.terminated and cs.termination_reason == CONTAINER_REASON_OOM_KILLED
        for cs in pod.container_statuses
    )


def from_pod_status_change(
    resolver: Resolver, old: Optional[Pod], new: Optional[Pod]
) -> list[Event]:
    """Emit started or terminated events when a Pod changes phase.

    A failed pod with an OOM-killed container is reported as an OOM kill.
    Without a previous state the phase counts as empty, so an already running
    pod yields a started baseline.
    """
    if new is None:
        return []
    old_phase = old.phase if old is not None else ""
    if old_phase == new.phase:
        return []

    if new.phase == POD_RUNNING:
        return [_pod_lifecycle_event(resolver, new, Kind.K8S_POD_STARTED, "Started")]
    if new.phase in (POD_SUCCEEDED, POD_FAILED):
        kind, reason = Kind.K8S_POD_TERMINATED, "Completed"
        if new.phase == POD_FAILED:
            if _container_oom_killed(new):
                kind, reason = Kind.K8S_OOM_KILL, CONTAINER_REASON_OOM_KILLED
            else:
                reason = "Failed"
        return [_pod_lifecycle_event(resolver, new, kind, reason)]
    return []


def _pod_lifecycle_event(resolver: Resolver, pod: Pod, kind: Kind, reason: str) -> Event:
    try:
        res = resolver.resolve(pod)
    except Exception as exc:
        raise MapperError(f"pod lifecycle event: {exc}") from exc
    service_id = res.service_id or pod.name

    attrs: dict[str, Any] = {
        "k8s.pod.name": pod.name,
        "k8s.namespace.name": pod.namespace,
        "k8s.resource.kind": "Pod",
        "k8s.reason": reason,
    }
    if pod.node_name:
        attrs["k8s.node.name"] = pod.node_name
    if res.owner_kind:
        attrs["k8s.owner.kind"] = res.owner_kind
    if res.owner_name:
        attrs["k8s.owner.name"] = res.owner_name

    occurred_at = 0
    if kind == Kind.K8S_POD_STARTED:
        occurred_at = time_to_unix_nano(pod.start_time)
    elif kind in (Kind.K8S_POD_TERMINATED, Kind.K8S_OOM_KILL):
        terminated = next((cs for cs in pod.container_statuses if cs.terminated), None)
        if terminated is not None:
            occurred_at = time_to_unix_nano(terminated.finished_at)
            if terminated.termination_reason:
                attrs["k8s.reason"] = terminated.termination_reason
            if terminated.name:
                attrs["k8s.container.name"] = terminated.name
            attrs["k8s.exit_code"] = int(terminated.exit_code)
    if occurred_at == 0:
        occurred_at = time_to_unix_nano(pod.metadata.creation_timestamp)
    if occurred_at == 0:
        occurred_at = now_unix_nano()

    if pod.container_statuses:
        attrs["k8s.restart_count"] = int(
            max(0, *(cs.restart_count for cs in pod.container_statuses))
        )

    return Event(
        id=new_id(),
        kind=kind,
        severity=severity_for_kind(kind),
        occurred_at=occurred_at,
        service_id=service_id,
        attributes=attrs,
    )


def deployment_rollout_status(deployment: Deployment) -> str:
    """Reduce a Deployment's Progressing condition to a rollout state.

    Returns "failed", "complete", "progressing", "unknown", or "" when there
    is no Progressing condition yet.
    """
    progressing = find_condition(deployment.conditions, DEPLOYMENT_PROGRESSING)
    if progressing is None:
        return ""
    if (
        progressing.status == ConditionStatus.FALSE
        and progressing.reason == REASON_PROGRESS_DEADLINE_EXCEEDED
    ):
        return "failed"
    if progressing.status == ConditionStatus.TRUE:
        if progressing.reason == REASON_NEW_REPLICA_SET_AVAILABLE:
            return "complete"
        return "progressing"
    return "unknown"


def from_deployment_rollout(
    resolver: Resolver, old: Optional[Deployment], new: Optional[Deployment]
) -> list[Event]:
    """Emit a rollout event when the Deployment's rollout state changed."""
    if new is None:
        return []
    status = deployment_rollout_status(new)
    previous = deployment_rollout_status(old) if old is not None else ""
    if status == previous:
        return []

    try:
        res = resolver.resolve(new)
    except Exception as exc:
        raise MapperError(f"from_deployment_rollout: resolve: {exc}") from exc
    service_id = res.service_id or new.name

    attrs: dict[str, Any] = {
        "k8s.deployment.name": new.name,
        "k8s.namespace.name": new.namespace,
        "k8s.resource.kind": "Deployment",
        "k8s.rollout.status": status,
    }
    if REVISION_ANNOTATION in new.annotations:
        attrs["k8s.rollout.revision"] = revision_attr(new.annotations[REVISION_ANNOTATION])

    occurred_at = 0
    progressing = find_condition(new.conditions, DEPLOYMENT_PROGRESSING)
    if progressing is not None:
        occurred_at = time_to_unix_nano(progressing.last_update_time)
    if occurred_at == 0:
        occurred_at = time_to_unix_nano(new.metadata.creation_timestamp)

    return [
        Event(
            id=new_id(),
            kind=Kind.K8S_DEPLOY_ROLLOUT,
            severity=severity_for_kind(Kind.K8S_DEPLOY_ROLLOUT),
            occurred_at=occurred_at,
            service_id=service_id,
            attributes=attrs,
        )
    ]