"""HTTP API - FastAPI dependencies and routers."""
