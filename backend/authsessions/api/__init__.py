"""HTTP API of the session service, mounted per version under ``API_BASE_PREFIX``."""

from __future__ import annotations

from collections.abc import Iterable

from flask import Blueprint, Flask


def _join(*parts: str) -> str:
    return "/" + "/".join(p.strip("/") for p in parts if p.strip("/"))


def mount(app: Flask, prefix: str, blueprints: Iterable[tuple[Blueprint, str]]) -> None:
    """Register each ``(blueprint, subpath)`` pair at ``prefix/subpath``."""
    for blueprint, subpath in blueprints:
        app.register_blueprint(blueprint, url_prefix=_join(prefix, subpath))


def init_app(app: Flask) -> None:
    from authsessions.api import v1

    base = app.config.get("API_BASE_PREFIX", "/api")
    mount(app, _join(base, v1.API_VERSION), v1.BLUEPRINTS)


__all__ = ["init_app", "mount"]
