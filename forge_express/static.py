"""Static file serving middleware."""

import enum
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union
from urllib.parse import quote, unquote

from forge_express.complete import Complete, _complete
from forge_express.continuation import Next
from forge_express.errors import HttpError
from forge_express.middleware import Middleware, sync_middleware
from forge_express.request import Request
from forge_express.response import Response, apply_file_headers


class Dotfiles(enum.Enum):
    """How to treat files and directories whose name starts with a dot."""

    ALLOW = "allow"
    DENY = "deny"
    IGNORE = "ignore"


SetHeaders = Callable[[Response, str, os.stat_result], None]


@dataclass(frozen=True)
class StaticOptions:
    """Options for ``static``.

    Attributes:
        dotfiles: Policy for dotfiles. Ignored ones look like missing files,
            denied ones are answered with 403.
        etag: Whether to send a weak ETag.
        extensions: Extensions to try when the requested file is missing,
            e.g. ``["html", "htm"]``.
        fallthrough: Whether missing files and non-GET/HEAD requests continue
            to the next middleware instead of ending with an error.
        immutable: Whether to add the immutable Cache-Control directive.
        index: Directory index file name, True for ``index.html`` or False
            to disable directory indexes.
        last_modified: Whether to send Last-Modified.
        max_age: Cache lifetime in milliseconds.
        redirect: Whether to redirect directory paths to a trailing slash.
        set_headers: Called with the response, file path and stat before
            the file is sent.
    """

    dotfiles: Dotfiles = Dotfiles.IGNORE
    etag: bool = True
    extensions: Optional[Sequence[str]] = None
    fallthrough: bool = True
    immutable: bool = False
    index: Union[bool, str] = True
    last_modified: bool = True
    max_age: int = 0
    redirect: bool = True
    set_headers: Optional[SetHeaders] = None


def _index_names(index: Union[bool, str]) -> List[str]:
    if index is True:
        return ["index.html"]
    if not index:
        return []
    return [index]


def _has_dotfile(parts: Sequence[str]) -> bool:
    return any(part.startswith(".") and part not in (".", "..") for part in parts)


def static(root: Union[str, Path], options: Optional[StaticOptions] = None) -> Middleware:
    """Serve files below ``root``.

    The request path, relative to where the middleware is mounted, selects
    the file.

    Args:
        root: Directory to serve.
        options: Serving options.

    Returns:
        A middleware value.
    """
    options = options or StaticOptions()
    base = Path(root).resolve()
    index_names = _index_names(options.index)

    def not_found(next: Next) -> Complete:
        if options.fallthrough:
            return next()
        return next(HttpError(404, "Not Found"))

    def send(response: Response, path: Path) -> Complete:
        stat = path.stat()
        raw = response.raw
        if options.set_headers is not None:
            options.set_headers(response, str(path), stat)
        apply_file_headers(
            raw,
            path,
            stat,
            etag=options.etag and raw.etag,
            last_modified=options.last_modified,
            max_age=options.max_age,
            immutable=options.immutable,
        )
        raw.finish_file(path)
        return _complete()

    def serve_static(next: Next, request: Request, response: Response) -> Complete:
        if request.raw.method not in ("GET", "HEAD"):
            if options.fallthrough:
                return next()
            response.set_header("Allow", "GET, HEAD")
            return response.send_raw_status(405)

        relative = unquote(request.path)
        if "\0" in relative:
            return next(HttpError(400, "Bad Request"))

        parts = [part for part in relative.split("/") if part]
        if ".." in parts:
            return next(HttpError(403, "Forbidden"))
        if _has_dotfile(parts):
            if options.dotfiles is Dotfiles.DENY:
                return next(HttpError(403, "Forbidden"))
            if options.dotfiles is Dotfiles.IGNORE:
                return not_found(next)

        target = base.joinpath(*parts)
        if target.is_dir():
            if not relative.endswith("/"):
                if not options.redirect:
                    return not_found(next)
                location = quote(request.base_url + request.path + "/", safe="/%")
                if request.raw.query_string:
                    location += "?" + request.raw.query_string
                return response.redirect_code(301, location)
            for name in index_names:
                candidate = target / name
                if candidate.is_file():
                    return send(response, candidate)
            return not_found(next)

        if target.is_file():
            return send(response, target)
        for extension in options.extensions or ():
            candidate = target.with_name(f"{target.name}.{extension.lstrip('.')}")
            if candidate.is_file():
                return send(response, candidate)
        return not_found(next)

    return sync_middleware.from_(serve_static)
