"""FastAPI service exposing span labeling and the result cache."""

from vcp.service.app import app

__all__ = ["app"]
