"""
asgi.py -- ASGI entry point for secure-user-auth.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
