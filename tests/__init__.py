"""Test suite for the screening workflow engine.

Unit tests cover each workflow component in isolation against a
temporary SQLite store; integration tests drive the service, the HTTP
API and the CLI end to end.  Run ``pytest`` from the project root.
"""
