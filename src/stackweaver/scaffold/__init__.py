"""Application source scaffolding for the three-tier demo app."""

from stackweaver.scaffold.renderer import APPS, ScaffoldOptions, render, render_text

__all__ = ["APPS", "ScaffoldOptions", "render", "render_text"]
