"""
Handgrade Package
=================

Flask-based service that grades photographed or scanned exam answers with a
vision-capable language model.

Structure:
- routes/: API route blueprints
- services/: normalization, request composition and backend dispatch
- models.py: pipeline data types
- errors.py: pipeline error taxonomy
- config.py: Configuration management
"""

from .config import config, Config

__version__ = "1.0.0"

__all__ = ['config', 'Config']
