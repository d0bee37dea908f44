"""
backend/wsgi.py — WSGI entry point.

    gunicorn "backend.wsgi:app"
    flask --app backend.wsgi run
"""

import os

from backend.app import create_app

app = create_app(os.getenv("FLASK_ENV", "development"))
