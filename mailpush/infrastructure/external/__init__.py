"""Clients for the mail providers and the push gateway."""
