"""ModelPlane: a schema-driven data-mapping engine over SQLAlchemy."""

__version__ = "0.1.0"
