from mailpush.infrastructure.persistence.models.user_registration import \
    UserRegistrationModel

__all__ = [
    "UserRegistrationModel",
]
