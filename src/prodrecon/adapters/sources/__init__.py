"""Row source adapters and the factory that picks one per job."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

from prodrecon.config import (
    FatalConfigError,
    MissingConfigurationError,
    get_platform_source_config,
    get_storage_config,
)

from .files import FileRowSource
from .platform import (
    CatalogItemPayload,
    CatalogPagePayload,
    HttpCatalogSource,
    catalog_page_is_cacheable,
)

if TYPE_CHECKING:
    from prodrecon.domain.model import IngestionJob
    from prodrecon.domain.ports import RowSource


def build_row_source(job: IngestionJob) -> RowSource:
    """Resolve ``job.source`` to a row source.

    ``file://`` URIs and bare paths are files on disk. ``attachment://<name>``
    refers to a mailbox attachment stored under the data directory.
    ``http(s)://`` URIs are paged catalog APIs and need platform credentials.
    """

    parsed = urlparse(job.source)
    match parsed.scheme:
        case "file":
            return FileRowSource(Path(unquote(parsed.path)))
        case "":
            return FileRowSource(Path(job.source))
        case "attachment":
            name = unquote(parsed.netloc + parsed.path)
            return FileRowSource(get_storage_config().attachment_path(name))
        case "http" | "https":
            try:
                config = get_platform_source_config(cache_predicate=catalog_page_is_cacheable)
            except MissingConfigurationError as exc:
                raise FatalConfigError(str(exc)) from exc
            return HttpCatalogSource(url=job.source, resilience=config.resilience)
        case _:
            raise FatalConfigError(f"Unsupported source scheme: {parsed.scheme!r}")


__all__ = [
    "CatalogItemPayload",
    "CatalogPagePayload",
    "FileRowSource",
    "HttpCatalogSource",
    "build_row_source",
    "catalog_page_is_cacheable",
]
