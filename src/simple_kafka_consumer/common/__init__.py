"""Common infrastructure: exceptions, logging and metrics."""
