"""RTO assessment validation orchestrator."""

__version__ = "0.1.0"
