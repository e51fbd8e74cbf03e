"""nodectl - remote cluster node and container orchestration core."""

__version__ = "0.1.0"
