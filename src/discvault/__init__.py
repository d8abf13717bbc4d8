"""discvault - unattended archival of optical discs across many drives."""

__version__ = "0.1.0"
