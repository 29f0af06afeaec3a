"""HTTP routers for the Kiln backend."""
