""" Repository module for the persistence layer. """

from mailpush.infrastructure.persistence.repositories.base import BaseRepository
from mailpush.infrastructure.persistence.repositories.registration_repo import RegistrationRepository

__all__ = [
    "BaseRepository",
    "RegistrationRepository",
]
