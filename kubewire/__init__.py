"""Map Kubernetes object changes to wire format v2 events; includes payload types and metrics."""

__version__ = "0.1.0"
__all__ = ["deployment", "events", "kube", "mapper", "metrics", "wireformat", "workloads"]