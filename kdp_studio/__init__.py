"""KDP Studio: AI-assisted book authoring and KDP export service."""

__version__ = "1.0.0"
