"""FastAPI front end for the web action."""
