"""
SQLAlchemy instance shared by every model module.

Usage:
    from bookclub.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
