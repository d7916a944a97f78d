"""Core infrastructure: exceptions and error capture."""
