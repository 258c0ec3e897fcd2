"""Routes informer notifications to the mapper for each kind of object.

Mapping is pure: objects go in, wire format events come out. All cluster
lookups go through the identity resolver.
"""

from __future__ import annotations

from typing import Any, Optional

from kubewire.deployment import (
    from_daemonset_change,
    from_deployment_change,
    from_deployment_delete,
    from_statefulset_change,
)
from kubewire.events import from_core_event, from_k8s_event, from_node_condition_change
from kubewire.kube import (
    CoreEvent,
    DaemonSet,
    Deployment,
    HorizontalPodAutoscaler,
    K8sEvent,
    Node,
    Pod,
    Resolver,
    StatefulSet,
)
from kubewire.wireformat import Event
from kubewire.workloads import from_deployment_rollout, from_hpa_scale, from_pod_status_change


def _as(obj: Any, cls: type) -> Any:
    return obj if isinstance(obj, cls) else None


def _listed(event: Optional[Event]) -> list[Event]:
    return [event] if event is not None else []


class Mapper:
    """Translates cluster objects into wire format events."""

    def __init__(self, resolver: Resolver):
        if resolver is None:
            raise ValueError("Mapper: resolver must not be None")
        self.resolver = resolver

    def dispatch(self, old: Any, new: Any) -> list[Event]:
        """Map an add (old None), update, or delete (new None) notification.

        Objects of kinds the mapper does not know yield no events.
        """
        if new is None:
            if old is not None:
                return self._dispatch_delete(old)
            return []

        resolver = self.resolver
        if isinstance(new, K8sEvent):
            return _listed(from_k8s_event(resolver, new))
        if isinstance(new, CoreEvent):
            return _listed(from_core_event(resolver, new))
        if isinstance(new, Node):
            return from_node_condition_change(_as(old, Node), new)
        if isinstance(new, Pod):
            return from_pod_status_change(resolver, _as(old, Pod), new)
        if isinstance(new, HorizontalPodAutoscaler):
            return _listed(from_hpa_scale(_as(old, HorizontalPodAutoscaler), new))
        if isinstance(new, Deployment):
            previous = _as(old, Deployment)
            infra = from_deployment_rollout(resolver, previous, new)
            deploy = from_deployment_change(resolver, previous, new)
            return infra + deploy
        if isinstance(new, StatefulSet):
            return from_statefulset_change(resolver, _as(old, StatefulSet), new)
        if isinstance(new, DaemonSet):
            return from_daemonset_change(resolver, _as(old, DaemonSet), new)
        return []

    def _dispatch_delete(self, obj: Any) -> list[Event]:
        # Only a Deployment deleted mid-rollout produces an event.
        if isinstance(obj, Deployment):
            return _listed(from_deployment_delete(self.resolver, obj))
        return []