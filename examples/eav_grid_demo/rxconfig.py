"""Reflex configuration for the EAV grid demo app."""

import reflex as rx

config = rx.Config(
    app_name="eav_grid_demo",
    plugins=[rx.plugins.SitemapPlugin()],
)
