"""HTTP routers for Workbench."""
