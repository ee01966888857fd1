"""Infrastructure and pipeline services."""
