"""
Flask-Migrate / gunicorn entry point.

Usage:
    flask db upgrade
    flask resume-workflows
    gunicorn wsgi:app
"""

from qa_pipeline import create_app

app = create_app()
