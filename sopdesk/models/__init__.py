"""
SOP Document Engine — model package.

Every model module imports the shared ``db`` handle from here so that
Flask-SQLAlchemy and Flask-Migrate see a single metadata object.

Usage:
    from sopdesk.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
