"""Infrastructure layer: configuration, persistence and provider / push clients."""
