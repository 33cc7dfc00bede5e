"""
Integrations: external service clients.
"""

from skillpath.integrations.text_generator import HttpTextGenerator, TextGenerator

__all__ = ["HttpTextGenerator", "TextGenerator"]
