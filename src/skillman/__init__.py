"""
skillman - install, track and update SKILL.md packages for coding agents.
"""

__version__ = "0.1.0"
