"""
FastAPI service.

Provides:
- GET /health - Store and Redis health
- GET/POST /websub/callback - WebSub hub verification and push delivery
- POST /sources/{id}/rescrape, POST /channels/{id}/check - forced runs
"""

from src.api.app import create_app

__all__ = ["create_app"]
