"""Presentation layer: FastAPI routes, schemas and error translation."""
