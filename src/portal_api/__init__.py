"""HTTP layer (FastAPI) for the membership portal payments backend."""
