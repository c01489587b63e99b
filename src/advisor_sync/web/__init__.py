"""
Advisor Sync Web - HTTP surface over the sync runtime.
"""

from advisor_sync.web.app import create_app

__all__ = ["create_app"]
