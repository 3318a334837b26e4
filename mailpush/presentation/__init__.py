"""HTTP surface of the push backend."""
