"""Command-line tools built on :class:`rtm.socket.RTMSocket`."""
