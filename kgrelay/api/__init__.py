"""HTTP surface: the FastAPI app factory and the ``/api`` management router."""

from kgrelay.api.app import create_app
from kgrelay.api.services import Services, build_services

__all__ = ["create_app", "Services", "build_services"]
