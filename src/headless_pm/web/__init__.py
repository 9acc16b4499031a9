"""Web interface for Headless PM.

The FastAPI application lives in ``headless_pm.web.app``; route modules
live in ``headless_pm.web.routes``.
"""
