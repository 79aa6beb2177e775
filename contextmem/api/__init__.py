"""FastAPI adapter over the memory engine."""
