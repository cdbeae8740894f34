"""
WSGI entry point and Flask-Migrate / Alembic host.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db init        # once, creates migrations/
    flask --app wsgi db migrate -m "..."
    flask --app wsgi db upgrade
    flask --app wsgi create-admin --name "Ops" --email ops@example.org
    flask --app wsgi purge-activity-logs
"""

from accredit import create_app

app = create_app()
