"""HTTP surface for the CardSnap vault (FastAPI)."""
