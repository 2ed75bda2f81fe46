"""Configuration for the Relata schema compiler."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RelataConfig:
    """Configuration for schema compilation and the generated API."""

    id_field: str = "id"
    default_quantifier: str = "some"
    touch_updated_at_on_create: bool = True
    log_level: str = "WARNING"
