"""
Middleware for request processing: correlation IDs and request size limits.
"""
