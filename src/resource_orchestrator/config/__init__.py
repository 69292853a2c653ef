"""Configuration models, loaders and plan templates."""
