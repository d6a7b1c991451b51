from __future__ import annotations


class AnimeSubError(RuntimeError):
    """Base class for addon pipeline failures."""


class MetadataUnavailable(AnimeSubError):
    """Title resolution failed or returned no title."""


class SearchTimeout(AnimeSubError):
    """A search strategy exceeded its time budget."""


class NoCandidatesFound(AnimeSubError):
    """No subtitle matched the requested title/episode."""


class AccessRejected(AnimeSubError):
    """The site reported the download hash as invalid or expired."""


class ArchiveExtractionFailure(AnimeSubError):
    """Neither the zip reader nor the external tool produced a subtitle."""


class MalformedAssDocument(AnimeSubError):
    """An ASS/SSA document is missing required structure (always repaired)."""


class ConversionFailure(AnimeSubError):
    """ASS to WebVTT conversion produced no usable cues."""
