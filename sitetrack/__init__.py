"""SiteTrack conversational intent engine."""

__version__ = "0.1.0"
