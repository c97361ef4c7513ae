"""Key estimation."""
