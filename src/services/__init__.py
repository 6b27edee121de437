"""Service seed file loading."""

from src.services.registry import ServiceRegistry

__all__ = ["ServiceRegistry"]
