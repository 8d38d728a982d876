"""Pydantic schemas shared by the engine and the API."""
