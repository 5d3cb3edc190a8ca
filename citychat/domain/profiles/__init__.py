"""Profile directory exports."""

from .schemas import UNKNOWN_USERNAME, Profile, ProfileUpdate
from .service import ProfileRepository, ProfileService

__all__ = [
	"UNKNOWN_USERNAME",
	"Profile",
	"ProfileRepository",
	"ProfileService",
	"ProfileUpdate",
]
