"""Request validation services for the call gateway."""
