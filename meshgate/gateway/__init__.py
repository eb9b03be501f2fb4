"""HTTP API gateway: dispatcher, registration saga and FastAPI application."""
