"""
PrivyBallot CLI Tools
"""

from .ballot import cli

__all__ = ["cli"]
