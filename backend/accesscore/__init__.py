"""Multi-tenant authorization core: permission catalog, role registry,
organization hierarchy and the permission resolution engine."""

__version__ = "0.1.0"
