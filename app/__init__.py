"""HTTP bootstrap server application package."""
