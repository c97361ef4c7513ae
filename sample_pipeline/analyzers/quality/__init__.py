"""Level and quality metrics."""
