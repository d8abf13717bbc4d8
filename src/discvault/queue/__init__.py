"""Persistent archival job queue."""
