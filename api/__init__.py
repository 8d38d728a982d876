"""FastAPI routers: REST endpoints and the /ws detection socket."""
