# Portfolio API - FastAPI application
#
# Exposes the vault and price cache to the local browser UI.

from .main import create_app, start_api_server

__all__ = ["create_app", "start_api_server"]
