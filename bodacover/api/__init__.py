"""HTTP surface for the cover core (FastAPI)."""
