"""External tool integrations.

Thin adapters around the system tools discvault drives: lsscsi for drive
inventory, blkid for media presence, isoinfo for disc layout, eject for the
tray, and libdvdcss for protected DVDs. Each adapter satisfies one of the
narrow protocols in ``interfaces`` so tests can substitute simulated drives.
"""
