"""
Core data layer module

Provides database connection, ORM models, and the app_state document store.
"""
from . import db
from . import models
from . import store

__all__ = ['db', 'models', 'store']
