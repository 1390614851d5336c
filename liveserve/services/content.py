"""
Content resolution for the live-reload server.

Maps request paths onto files under the serving directory, picks the content
type and content encoding, builds directory listings and injects the reload
script into HTML pages while live mode is active.
"""

import logging
import mimetypes
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from urllib.parse import quote

from fastapi.templating import Jinja2Templates

logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"
DEFAULT_MEDIA_TYPE = "text/plain"
HTML_MEDIA_TYPE = "text/html"
BODY_CLOSE_TAG = b"</body>"

# Compression marker extension -> Content-Encoding
COMPRESSION_ENCODINGS = {
    ".gz": "gzip",
    ".br": "br",
}

DIRECTORY_ICON = "\N{FILE FOLDER}"
FILE_ICON = "\N{PAGE FACING UP}"


class ContentKind(Enum):
    """What a request path resolved to."""

    FILE = "file"
    LISTING = "listing"
    REDIRECT = "redirect"
    NOT_FOUND = "not_found"


@dataclass
class DirectoryEntry:
    name: str
    href: str
    is_directory: bool

    @property
    def icon(self) -> str:
        return DIRECTORY_ICON if self.is_directory else FILE_ICON


@dataclass
class ResolvedContent:
    """Result of resolving a request path."""

    kind: ContentKind
    path: Path | None = None
    media_type: str | None = None
    encoding: str | None = None
    location: str | None = None
    entries: list[DirectoryEntry] = field(default_factory=list)

    @property
    def is_html(self) -> bool:
        return self.media_type == HTML_MEDIA_TYPE and self.encoding is None


def content_type_for(path: Path | str) -> tuple[str, str | None]:
    """
    Content type and content encoding for a file name.

    A trailing compression marker (``.gz``, ``.br``) is stripped before the
    MIME lookup and reported as the encoding instead.

    Args:
        path: File path or name

    Returns:
        (media_type, encoding) where encoding is None for uncompressed files
    """
    name = Path(path).name
    encoding = None

    stem, suffix = os.path.splitext(name)
    if suffix.lower() in COMPRESSION_ENCODINGS:
        encoding = COMPRESSION_ENCODINGS[suffix.lower()]
        name = stem

    media_type, _ = mimetypes.guess_type(name, strict=False)
    return media_type or DEFAULT_MEDIA_TYPE, encoding


def inject_reload_script(content: bytes, script: bytes) -> bytes:
    """
    Insert the reload script right before the first closing body tag.

    Documents without a closing body tag are returned unchanged.
    """
    return content.replace(BODY_CLOSE_TAG, script + BODY_CLOSE_TAG, 1)


def is_readable_file(path: Path) -> bool:
    try:
        return path.is_file() and os.access(path, os.R_OK)
    except OSError as e:
        logger.warning(f"Cannot access {path}: {e}")
        return False


class ContentResolver:
    """Resolves request paths under one serving directory."""

    def __init__(
        self,
        base_dir: Path,
        templates: Jinja2Templates,
        live: bool = False,
        live_url: str = "/_live",
        reconnect_delay_ms: int = 5000,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.templates = templates
        self.live = live
        self.live_url = live_url

        self.reload_script = (
            templates.get_template("reload_script.html")
            .render(live_url=live_url, reconnect_delay_ms=reconnect_delay_ms)
            .encode("utf-8")
        )

    def _target(self, url_path: str) -> Path:
        # Plain join; normpath collapses "." and ".." segments
        return Path(os.path.normpath(os.path.join(self.base_dir, url_path.lstrip("/"))))

    def resolve(self, url_path: str) -> ResolvedContent:
        """
        Resolve a decoded URL path.

        Args:
            url_path: Path component of the request URL, starting with "/"

        Returns:
            ResolvedContent describing a file, listing, redirect or miss
        """
        target = self._target(url_path)

        if url_path.endswith("/"):
            index = target / INDEX_FILE
            if is_readable_file(index):
                return self._file(index)

            try:
                entries = self.list_directory(target, url_path)
            except OSError as e:
                logger.warning(f"Cannot list directory {target}: {e}")
            else:
                return ResolvedContent(
                    kind=ContentKind.LISTING, path=target, media_type=HTML_MEDIA_TYPE, entries=entries
                )
        elif target.is_dir():
            return ResolvedContent(kind=ContentKind.REDIRECT, path=target, location=url_path + "/")

        if is_readable_file(target):
            return self._file(target)

        return ResolvedContent(kind=ContentKind.NOT_FOUND, path=target)

    def _file(self, path: Path) -> ResolvedContent:
        media_type, encoding = content_type_for(path)
        return ResolvedContent(kind=ContentKind.FILE, path=path, media_type=media_type, encoding=encoding)

    def list_directory(self, directory: Path, url_path: str) -> list[DirectoryEntry]:
        """
        Directory entries in enumeration order (not sorted).

        Raises:
            OSError: If the directory cannot be enumerated
        """
        entries = []
        with os.scandir(directory) as it:
            for entry in it:
                is_directory = entry.is_dir()
                href = url_path + quote(entry.name) + ("/" if is_directory else "")
                entries.append(DirectoryEntry(name=entry.name, href=href, is_directory=is_directory))
        return entries

    def render_listing(self, resolved: ResolvedContent, url_path: str) -> str:
        return self.templates.get_template("listing.html").render(url_path=url_path, entries=resolved.entries)

    def should_inject(self, resolved: ResolvedContent) -> bool:
        """Whether the response body has to be buffered for script injection."""
        return self.live and resolved.kind is ContentKind.FILE and resolved.is_html

    def read_with_reload_script(self, path: Path) -> bytes:
        """
        Read an HTML file fully and inject the reload script.

        Raises:
            OSError: If the file cannot be read
        """
        return inject_reload_script(path.read_bytes(), self.reload_script)
