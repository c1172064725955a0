"""
Shared route dependencies.
"""

from fastapi import Request

from officehours.services.engine import BookingEngine


def get_engine(request: Request) -> BookingEngine:
    """The BookingEngine built by the application lifespan."""
    return request.app.state.engine
