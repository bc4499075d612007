"""ASGI application factory and dependencies for the MealForge server."""

from mealforge.server.app import app, create_app

__all__ = ["app", "create_app"]
