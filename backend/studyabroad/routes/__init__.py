"""HTTP routers, one module per area. `main.py` mounts them all."""
