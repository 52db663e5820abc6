"""FastAPI dependencies."""

from fastapi import Request

from banksync.services import Services


def get_services(request: Request) -> Services:
    """Services built for this app instance."""
    return request.app.state.services
