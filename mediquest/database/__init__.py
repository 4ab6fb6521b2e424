"""Document store access."""
