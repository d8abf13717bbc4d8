"""Archival pipeline and the archive record manifest."""
