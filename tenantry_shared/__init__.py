"""Pydantic schemas shared by the Tenantry server and its API clients."""
