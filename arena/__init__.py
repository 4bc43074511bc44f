"""Arena battles for Discord: challenges, stances, abilities and a rowdy crowd."""

__version__ = "0.1.0"
