from mailpush.presentation.api.v1.routes import lifecycle, provider_hooks

__all__ = ["lifecycle", "provider_hooks"]
