"""Internal provider endpoint modules."""
