"""drivemirror - mirror local directory trees onto a remote file store."""
