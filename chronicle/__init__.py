"""
Chronicle content API.

This package provides a FastAPI application serving stories and topics from
a SQL database, with a Redis-backed response cache in front of the read
endpoints.
"""
