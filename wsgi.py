"""
WSGI and Flask-Migrate / Alembic entry point.

Usage:
    FLASK_APP=wsgi.py flask seed-demo
    flask db init       # first time only (creates migrations/)
    flask db migrate -m "description"
    flask db upgrade
    gunicorn wsgi:app
"""

from procurement import create_app

app = create_app()
