"""captiongate: result cache, quota and abuse control for caption generation."""

__version__ = "0.1.0"
