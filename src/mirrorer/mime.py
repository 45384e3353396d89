"""MIME type registry used to pick file extensions for mirrored responses."""

import mimetypes
import structlog

logger = structlog.get_logger()

ADDITIONAL_MIME_TYPES: dict[str, list[str]] = {
    ".atom": ["application/atom+xml"],
    ".csv": ["text/csv"],
    ".docx": ["application/vnd.openxmlformats-officedocument.wordprocessingml.document"],
    ".ico": ["image/vnd.microsoft.icon", "image/x-icon"],
    ".ics": ["text/calendar"],
    ".odp": ["application/vnd.oasis.opendocument.presentation"],
    ".ods": ["application/vnd.oasis.opendocument.spreadsheet"],
    ".odt": ["application/vnd.oasis.opendocument.text"],
    ".xls": ["application/vnd.ms-excel"],
    ".xlsx": ["application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"],
    ".xml": ["application/xml"],
    ".js": ["application/javascript", "text/javascript"],
    ".woff": ["font/woff"],
    ".woff2": ["font/woff2"],
}

# Built-in table only, so lookups don't depend on the host's mime.types files
_registry = mimetypes.MimeTypes()


def load_additional_mime_types() -> None:
    """Register the extra extensions with our registry and the process-wide table."""
    for ext, types in ADDITIONAL_MIME_TYPES.items():
        for media_type in types:
            _registry.add_type(media_type, ext)
            mimetypes.add_type(media_type, ext)

    logger.debug("mime_types_loaded", extensions=len(ADDITIONAL_MIME_TYPES))


def parse_media_type(value: str) -> str:
    """
    Parse a Content-Type header into its bare media type.

    Args:
        value: Raw header value, e.g. ``text/html; charset=utf-8``

    Returns:
        Lower-cased media type without parameters

    Raises:
        ValueError: If the value is empty or not of the form type/subtype
    """
    media_type = value.split(";", 1)[0].strip().lower()
    if not media_type:
        raise ValueError("no media type")

    main, _, sub = media_type.partition("/")
    if not main or not sub:
        raise ValueError(f"invalid media type: {value!r}")

    return media_type


def extensions_for(content_type: str) -> list[str]:
    """Return the sorted list of known extensions for a content type."""
    media_type = parse_media_type(content_type)
    return sorted(set(_registry.guess_all_extensions(media_type)))
