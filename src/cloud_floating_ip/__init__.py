"""Floating IP failover for AWS and GCE instances through route reconciliation."""

__version__ = "1.0.0"
