"""HTTP server for the forward-auth endpoint."""
