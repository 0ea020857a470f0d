"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-structure-template
    gunicorn wsgi:app
"""

from evidence_portfolio import create_app

app = create_app()
