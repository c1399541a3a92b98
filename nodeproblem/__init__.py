"""Building blocks for detecting node problems and reporting them as Kubernetes node conditions and events."""

__version__ = "0.1.0"