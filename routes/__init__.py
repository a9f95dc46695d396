"""
Flask route blueprints for the print queue core.

This module contains all route handlers organized by functionality:
- api: Health check
- orders: Order submission, queue listing, lifecycle transitions
- concatenation: Proposals, inline builds, background runs
- jobs: Job (re)analysis and package inspection

All endpoints speak JSON except the package downloads. Each blueprint is
registered with the Flask app in create_app().
"""

from .api import api_bp
from .orders import orders_bp
from .concatenation import concatenation_bp
from .jobs import jobs_bp

__all__ = [
    "api_bp",
    "orders_bp",
    "concatenation_bp",
    "jobs_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(api_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(concatenation_bp)
    app.register_blueprint(jobs_bp)
