"""
asgi.py -- ASGI entry point for SessionKeeper.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
