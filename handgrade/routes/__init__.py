"""
Handgrade API Routes
====================

All API route blueprints for the Handgrade application.

Usage:
    from handgrade.routes import register_routes
    register_routes(app)
"""
from .grading_routes import grading_bp


def register_routes(app):
    """Register all route blueprints with the Flask app."""
    app.register_blueprint(grading_bp)


__all__ = [
    'register_routes',
    'grading_bp',
]
