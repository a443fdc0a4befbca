"""Pydantic request/response records."""
