"""
Process-wide batch runner shared by the API routes.

Only one batch (or single-URL test) may use the browser at a time, so every
request goes through the same BatchRunner instance.
"""

from batch_runner import BatchRunner


runner = BatchRunner()


def get_runner() -> BatchRunner:
    """Dependency for FastAPI routes; tests override it with a stub runner."""
    return runner
