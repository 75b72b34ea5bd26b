"""HTTP surface of Review Portal: FastAPI app, routes and SSE streaming."""

from reviewportal.web.app import create_app

__all__ = ["create_app"]
