"""Core orchestration and scheduling.

This module contains the components that coordinate archival across drives:
the retry policy, the job scheduler, the per-drive workers, the orchestrator
that wires them together, and daemon management.
"""
