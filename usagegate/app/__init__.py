"""FastAPI application package for usagegate."""
