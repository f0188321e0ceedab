"""Shared service building blocks: base class, errors and ports."""
