"""newsunfurl: recover real article URLs from Google News feed tokens."""

__version__ = "0.1.0"
