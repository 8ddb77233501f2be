"""bgproc - track detached background shell processes."""

__version__ = "0.1.0"
