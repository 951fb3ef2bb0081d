"""KFP v2 components — each file exports one @dsl.component."""

from pipelines.components.refresh import refresh_sources

__all__ = ["refresh_sources"]
