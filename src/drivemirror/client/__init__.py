"""Client side of drivemirror: remote store API, auth, sync engine and CLI."""
