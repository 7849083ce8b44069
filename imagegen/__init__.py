"""ImageGen - Gemini web image generation client and session tooling."""

__version__ = "0.1.0"
