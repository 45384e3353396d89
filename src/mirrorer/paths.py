"""Mapping of URLs to paths in the local mirror."""

import posixpath
from urllib.parse import urlsplit

from mirrorer.mime import extensions_for


class UnknownContentType(ValueError):
    """No file extension could be determined for a response."""

    def __init__(self, url: str, content_type: str):
        self.url = url
        self.content_type = content_type
        super().__init__(f"error determining content type {content_type!r} for {url}")


def path_segments(path: str) -> list[str]:
    """
    Split a URL path into segments with dot segments resolved.

    Resolution is anchored at the root, so ``..`` never climbs above it.
    Empty segments are dropped and a path naming a directory ends in
    ``index``.
    """
    segments: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)

    if path.rsplit("/", 1)[-1] in ("", ".", ".."):
        segments.append("index")
    return segments


def generate_file_path(url: str, content_type: str) -> str:
    """
    Build the relative path a response is stored at.

    The host is the first segment and the URL path follows it. A trailing
    slash becomes ``index``. The query string and fragment are dropped, and
    percent-escapes in the path are kept as they are. Dot segments are
    resolved, so the path never leaves the host directory.

    Args:
        url: Absolute URL of the response
        content_type: Content-Type header, may be empty

    Returns:
        Relative filesystem path such as ``example.com/foo/bar.html``

    Raises:
        UnknownContentType: If the last segment has no extension and the
            content type has no known extension either
        ValueError: If the content type cannot be parsed
    """
    parts = urlsplit(url)
    host = parts.hostname or ""

    segments = path_segments(parts.path)

    extensions: list[str] = []
    if content_type:
        extensions = extensions_for(content_type)

    current_extension = posixpath.splitext(segments[-1])[1]

    if not extensions and not current_extension:
        raise UnknownContentType(url, content_type)

    if extensions and current_extension not in extensions:
        segments[-1] += extensions[-1]

    return posixpath.join(host, *segments)
