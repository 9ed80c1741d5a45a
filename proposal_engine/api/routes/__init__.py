from . import generation, jobs

__all__ = ["generation", "jobs"]
