"""
Dynamic Document Engine — SQLAlchemy models package.

The shared ``db`` handle is created here and bound to the Flask app inside
``create_app`` via ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
