"""Deployment-domain lifecycle events for Deployments, StatefulSets and DaemonSets.

These events describe the user-visible deploy (started, succeeded, failed,
rolled back, cancelled) rather than the controller's internal rollout state.
The cluster exposes no single clean signal for most of them, so the
detection rules are heuristic:

- started: a new revision annotation, with Progressing reason NewReplicaSetCreated;
- succeeded: Available=True, updated and ready replicas equal to the desired
  count, and Progressing turned to reason NewReplicaSetAvailable;
- failed: Progressing=False with reason ProgressDeadlineExceeded;
- rolled back: the revision went down, or a new change-cause mentions a rollback;
- cancelled: replicas scaled to zero mid-rollout, or deletion mid-rollout.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Union

from kubewire.events import new_id, severity_for_kind, truncate
from kubewire.kube import (
    CHANGE_CAUSE_ANNOTATION,
    DEPLOYMENT_AVAILABLE,
    DEPLOYMENT_PROGRESSING,
    REVISION_ANNOTATION,
    ConditionStatus,
    DaemonSet,
    Deployment,
    MapperError,
    Resolver,
    StatefulSet,
    find_condition,
)
from kubewire.wireformat import Event, Kind, time_to_unix_nano

REASON_NEW_REPLICA_SET_CREATED = "NewReplicaSetCreated"
REASON_NEW_REPLICA_SET_AVAILABLE = "NewReplicaSetAvailable"
REASON_PROGRESS_DEADLINE_EXCEEDED = "ProgressDeadlineExceeded"

CHANGE_CAUSE_LIMIT = 512

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

Workload = Union[Deployment, StatefulSet, DaemonSet]


def parse_revision(text: str) -> int:
    """Parse the leading integer of a revision annotation; raise ValueError otherwise."""
    if not text:
        raise ValueError("empty revision")
    match = _LEADING_INT.match(text)
    if match is None:
        raise ValueError(f"revision {text!r} is not an integer")
    return int(match.group(1))


def revision_attr(text: str) -> Union[int, str]:
    """Return the revision as an int when it parses, else the raw string."""
    try:
        return parse_revision(text)
    except ValueError:
        return text


def revision_less(a: str, b: str) -> bool:
    """Compare revisions numerically, or lexically when either is not an integer."""
    try:
        return parse_revision(a) < parse_revision(b)
    except ValueError:
        return a < b


def is_rollback(old_rev: str, new_rev: str, old_cause: str, new_cause: str) -> bool:
    """True when the revision went down or a new change-cause mentions a rollback."""
    if new_rev and old_rev and revision_less(new_rev, old_rev):
        return True
    return bool(new_cause) and new_cause != old_cause and "rollback" in new_cause.lower()


def spec_replicas(replicas: Optional[int]) -> int:
    """Desired replica count, defaulting to one when unset."""
    return 1 if replicas is None else replicas


def _is_true(condition: Any) -> bool:
    return condition is not None and condition.status == ConditionStatus.TRUE


def _progressing(deployment: Deployment):
    return find_condition(deployment.conditions, DEPLOYMENT_PROGRESSING)


def _is_deploy_started(
    old: Optional[Deployment], new: Deployment, old_rev: str, new_rev: str
) -> bool:
    if not new_rev:
        return False
    progressing = _progressing(new)
    if progressing is None:
        return False
    freshly_created = (
        _is_true(progressing) and progressing.reason == REASON_NEW_REPLICA_SET_CREATED
    )
    if old is None:
        return freshly_created
    if old_rev != new_rev:
        return True
    old_progressing = _progressing(old)
    if old_progressing is None or old_progressing.reason != REASON_NEW_REPLICA_SET_CREATED:
        return freshly_created
    return False


def _is_deploy_succeeded(old: Optional[Deployment], new: Deployment) -> bool:
    available = find_condition(new.conditions, DEPLOYMENT_AVAILABLE)
    progressing = _progressing(new)
    if not _is_true(available):
        return False
    if progressing is None or progressing.reason != REASON_NEW_REPLICA_SET_AVAILABLE:
        return False
    want = spec_replicas(new.replicas)
    if new.updated_replicas != want or new.ready_replicas != want:
        return False
    # A stable deployment that just appeared cannot be told apart from a
    # fresh success, so nothing is reported without a previous state.
    if old is None:
        return False
    old_progressing = _progressing(old)
    return not (
        old_progressing is not None
        and old_progressing.reason == REASON_NEW_REPLICA_SET_AVAILABLE
    )


def _is_deploy_failed(old: Optional[Deployment], new: Deployment) -> bool:
    progressing = _progressing(new)
    if progressing is None:
        return False
    if (
        progressing.status != ConditionStatus.FALSE
        or progressing.reason != REASON_PROGRESS_DEADLINE_EXCEEDED
    ):
        return False
    if old is None:
        return True
    old_progressing = _progressing(old)
    return not (
        old_progressing is not None
        and old_progressing.reason == REASON_PROGRESS_DEADLINE_EXCEEDED
    )


def _is_deploy_cancelled(old: Optional[Deployment], new: Deployment) -> bool:
    if old is None:
        return False
    if spec_replicas(old.replicas) == 0 or spec_replicas(new.replicas) != 0:
        return False
    return _is_true(_progressing(old))


def _deployment_occurred_at(deployment: Deployment) -> int:
    latest = max(
        (time_to_unix_nano(c.last_transition_time) for c in deployment.conditions),
        default=0,
    )
    if latest <= 0:
        latest = time_to_unix_nano(deployment.metadata.creation_timestamp)
    return latest


def _resolve_workload_service_id(resolver: Resolver, workload: Workload, where: str) -> str:
    try:
        res = resolver.resolve_ref(workload.kind, workload.namespace, workload.name)
    except Exception as exc:
        raise MapperError(f"{where}: {exc}") from exc
    return res.service_id or workload.name


def _build_deploy_event(
    workload: Workload,
    service_id: str,
    kind: Kind,
    reason: str,
    occurred_at: int,
    extra: dict[str, Any],
) -> Event:
    attrs: dict[str, Any] = {
        "k8s.namespace.name": workload.namespace,
        "k8s.workload.name": workload.name,
        "k8s.reason": reason,
    }
    labels = workload.labels
    if labels.get("app.kubernetes.io/part-of"):
        attrs["deployment.environment"] = labels["app.kubernetes.io/part-of"]
    if labels.get("environment"):
        attrs["deployment.environment"] = labels["environment"]
    cause = workload.annotations.get(CHANGE_CAUSE_ANNOTATION, "")
    if cause:
        attrs["k8s.change_cause"] = truncate(cause, CHANGE_CAUSE_LIMIT)
    for key, value in extra.items():
        if isinstance(value, str):
            if value:
                attrs[key] = value
        elif value is not None:
            attrs[key] = value
    return Event(
        id=new_id(),
        kind=kind,
        severity=severity_for_kind(kind),
        occurred_at=occurred_at,
        service_id=service_id,
        attributes=attrs,
    )


def from_deployment_change(
    resolver: Resolver, old: Optional[Deployment], new: Optional[Deployment]
) -> list[Event]:
    """Emit deploy lifecycle events for a Deployment transition.

    A rollback takes precedence and is then the only event reported.
    """
    if new is None:
        return []
    service_id = _resolve_workload_service_id(resolver, new, "from_deployment_change")

    new_rev = new.annotations.get(REVISION_ANNOTATION, "")
    new_cause = new.annotations.get(CHANGE_CAUSE_ANNOTATION, "")
    old_rev = old.annotations.get(REVISION_ANNOTATION, "") if old is not None else ""
    old_cause = old.annotations.get(CHANGE_CAUSE_ANNOTATION, "") if old is not None else ""
    occurred_at = _deployment_occurred_at(new)

    if is_rollback(old_rev, new_rev, old_cause, new_cause):
        return [
            _build_deploy_event(
                new,
                service_id,
                Kind.DEPLOY_ROLLED_BACK,
                "RolledBack",
                occurred_at,
                {
                    "k8s.rollout.revision": revision_attr(new_rev),
                    "k8s.rollout.prev_revision": revision_attr(old_rev),
                    "k8s.rollout.change_cause": new_cause,
                },
            )
        ]

    revision = {"k8s.rollout.revision": revision_attr(new_rev)}
    checks = (
        (_is_deploy_started(old, new, old_rev, new_rev), Kind.DEPLOY_STARTED, "Started"),
        (_is_deploy_succeeded(old, new), Kind.DEPLOY_SUCCEEDED, "Succeeded"),
        (
            _is_deploy_failed(old, new),
            Kind.DEPLOY_FAILED,
            REASON_PROGRESS_DEADLINE_EXCEEDED,
        ),
        (_is_deploy_cancelled(old, new), Kind.DEPLOY_CANCELLED, "ScaleToZero"),
    )
    return [
        _build_deploy_event(new, service_id, kind, reason, occurred_at, revision)
        for fired, kind, reason in checks
        if fired
    ]


def from_deployment_delete(
    resolver: Resolver, deployment: Optional[Deployment]
) -> Optional[Event]:
    """Emit a cancellation when a Deployment is deleted mid-rollout, else None."""
    if deployment is None:
        return None
    progressing = _progressing(deployment)
    if not _is_true(progressing):
        return None
    # Deleting a deployment whose last rollout completed is routine cleanup.
    if progressing.reason == REASON_NEW_REPLICA_SET_AVAILABLE:
        return None
    service_id = _resolve_workload_service_id(resolver, deployment, "from_deployment_delete")
    return _build_deploy_event(
        deployment,
        service_id,
        Kind.DEPLOY_CANCELLED,
        "DeletedMidRollout",
        _deployment_occurred_at(deployment),
        {
            "k8s.rollout.revision": revision_attr(
                deployment.annotations.get(REVISION_ANNOTATION, "")
            )
        },
    )


def from_statefulset_change(
    resolver: Resolver, old: Optional[StatefulSet], new: Optional[StatefulSet]
) -> list[Event]:
    """Emit deploy events for a StatefulSet from its update and current revisions."""
    if new is None:
        return []
    service_id = _resolve_workload_service_id(resolver, new, "from_statefulset_change")

    new_update, new_current = new.update_revision, new.current_revision
    old_update = old.update_revision if old is not None else ""
    old_current = old.current_revision if old is not None else ""
    occurred_at = time_to_unix_nano(new.metadata.creation_timestamp)

    out = []
    if new_update and new_update != new_current:
        started = old is None or old_update == old_current or old_update != new_update
        if started:
            out.append(
                _build_deploy_event(
                    new,
                    service_id,
                    Kind.DEPLOY_STARTED,
                    "Started",
                    occurred_at,
                    {
                        "k8s.rollout.revision": new_update,
                        "k8s.rollout.current": new_current,
                        "k8s.resource.kind": "StatefulSet",
                    },
                )
            )

    if (
        old is not None
        and old_update
        and old_update != old_current
        and new_update
        and new_update == new_current
        and new.ready_replicas == spec_replicas(new.replicas)
    ):
        out.append(
            _build_deploy_event(
                new,
                service_id,
                Kind.DEPLOY_SUCCEEDED,
                "Succeeded",
                occurred_at,
                {"k8s.rollout.revision": new_update, "k8s.resource.kind": "StatefulSet"},
            )
        )
    return out


def from_daemonset_change(
    resolver: Resolver, old: Optional[DaemonSet], new: Optional[DaemonSet]
) -> list[Event]:
    """Emit deploy events for a DaemonSet from its generation and scheduling counters."""
    if new is None:
        return []
    service_id = _resolve_workload_service_id(resolver, new, "from_daemonset_change")

    new_gen = new.observed_generation
    new_updated = new.updated_number_scheduled
    new_desired = new.desired_number_scheduled
    old_gen = old.observed_generation if old is not None else 0
    old_updated = old.updated_number_scheduled if old is not None else 0
    old_desired = old.desired_number_scheduled if old is not None else 0
    occurred_at = time_to_unix_nano(new.metadata.creation_timestamp)
    extra = {"k8s.rollout.generation": new_gen, "k8s.resource.kind": "DaemonSet"}

    out = []
    if new_gen > old_gen and new_updated < new_desired:
        out.append(
            _build_deploy_event(
                new, service_id, Kind.DEPLOY_STARTED, "Started", occurred_at, extra
            )
        )
    if (
        old is not None
        and old_updated < old_desired
        and new_updated == new_desired
        and new_desired > 0
    ):
        out.append(
            _build_deploy_event(
                new, service_id, Kind.DEPLOY_SUCCEEDED, "Succeeded", occurred_at, extra
            )
        )
    return out