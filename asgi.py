"""
asgi.py -- Application assembly for the DataCatalog auth API.

This is the module ASGI servers import. The React catalog client is served
separately and talks to this app over /api.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
