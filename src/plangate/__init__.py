"""Resilient multi-provider LLM gateway for plan generation."""

__version__ = "0.1.0"
