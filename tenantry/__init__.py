"""Tenantry: multi-tenant SaaS starter backend."""

__version__ = "0.1.0"
