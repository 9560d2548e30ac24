"""Multi-tenant chat booking bot for salons and clinics."""

__version__ = "0.1.0"
