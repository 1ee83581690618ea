"""Pydantic DTOs shared by the application services and the API layer."""
