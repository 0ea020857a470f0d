"""
SQLAlchemy models package.

The shared ``db`` instance is created here and bound to the Flask app in
``create_app``. Model modules import it as ``from evidence_portfolio.models import db``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
