"""Workbench: a password-gated streaming chat relay for the Anthropic API."""

__version__ = "0.1.0"
