from .protocol import Task

__all__ = ["Task"]
