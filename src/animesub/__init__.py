"""Polish subtitles from animesub.info for Stremio."""

__version__ = "1.2.0"
