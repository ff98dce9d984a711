"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache

from config.settings import get_settings
from relay.controller import RelayController


@lru_cache(maxsize=1)
def _controller_factory() -> RelayController:
    return RelayController(get_settings())


def get_relay_controller() -> RelayController:
    return _controller_factory()
