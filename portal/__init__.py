"""Bearer-token auth portal: FastAPI backend plus a Python session client."""
