"""HTTP surface for banksync."""

from banksync.api.app import create_app

__all__ = ["create_app"]
