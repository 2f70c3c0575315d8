"""
Fire-safety contract management: SQLAlchemy models.

The ``db`` extension object is shared by every model module; import the
concrete models from their modules (``firesafe.models.project`` etc.).
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
