"""Services for compose-exec."""
