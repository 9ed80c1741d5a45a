"""Schema package exports."""

from .jobs import ProposalJob
from .user_settings import UserSettings

__all__ = ["ProposalJob", "UserSettings"]
