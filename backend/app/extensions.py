"""
extensions.py — Flask extension singletons.

Creates the SQLAlchemy and marshmallow objects without an app attached; the
app factory calls init_app() on each. Import them from here:

    from backend.app.extensions import db, ma

Schema rule:
  - Request validation schemas (app/schemas/*_schema.py) inherit from
    marshmallow.Schema so unit tests can load them without an app context.
  - Response serialisers (app/schemas/serializers.py) use ma.Schema; they are
    only dumped inside a request.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

ma = Marshmallow()
