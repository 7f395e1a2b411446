"""
WSGI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi run
"""

from upgrade_pipeline import create_app

app = create_app()
