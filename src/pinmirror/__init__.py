"""pinmirror - mirror pinned Discord messages into an archive channel."""

__version__ = "0.2.0"
