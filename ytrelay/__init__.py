"""
yt-relay: HTTP relay in front of yt-dlp with fallback strategies.
"""

__version__ = "1.0.0"
