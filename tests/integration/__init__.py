"""Integration tests exercising the service, HTTP API and CLI together."""
