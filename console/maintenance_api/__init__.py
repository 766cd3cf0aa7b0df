"""
JOAP Maintenance API - HTTP surface for the backup engine.

Exposes manual and scheduled backups, backup history, downloads and
confirmed restores under /api/maintenance.
"""

from .app import create_app
from .routes import router

__all__ = ["create_app", "router"]
