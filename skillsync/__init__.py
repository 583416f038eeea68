"""skillsync - keep one canonical copy of each AI-assistant skill in sync across tools."""

__version__ = "0.1.0"

from skillsync.config import Config
from skillsync.engine import SkillEngine

__all__ = ["Config", "SkillEngine", "__version__"]
