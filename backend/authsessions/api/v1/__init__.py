"""Version 1 routes: health, auth sessions and store diagnostics."""

from __future__ import annotations

from flask import Blueprint

from .auth import bp as auth
from .diagnostics import bp as diagnostics
from .health import bp as health

API_VERSION = "v1"

BLUEPRINTS: tuple[tuple[Blueprint, str], ...] = (
    (health, ""),
    (auth, "auth"),
    (diagnostics, "diagnostics"),
)
