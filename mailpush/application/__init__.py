"""
Application layer.

- Interfaces (ports) for providers, stores and the push gateway
- Application services (digest formatting, subscription management)
- Use cases (notification pipeline, device lifecycle)
"""
