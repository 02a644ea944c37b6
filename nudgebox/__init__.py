"""
Backend package for the nudgebox service.

This package provides a FastAPI application that passes messages and nudges
between registered identifiers and exports the encrypted audio store as a
zip archive, with storage and database abstractions that run in memory for
local development and tests.
"""
