"""Drive registry and per-drive state machine."""
