"""HTTP adapter for the screening engine.

The FastAPI application in :mod:`screenflow.web.app` maps the service
operations onto JSON endpoints.  Authentication happens upstream; the
caller's identity and role arrive in the ``X-User-Id`` and
``X-User-Role`` headers.

To start the server from the CLI use:
    screenflow serve --port 8000
"""
