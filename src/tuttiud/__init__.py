"""Tuttiud tenant onboarding: setup gateway API and onboarding wizard."""

__version__ = "0.4.0"
