"""Authenticated HTTP access to the course backend."""

from course_player.api.client import ApiClient
from course_player.api.tokens import TokenManager

__all__ = ["ApiClient", "TokenManager"]
