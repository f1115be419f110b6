"""
Pytest configuration for the CHIP-8 test suite.

pygame is pointed at SDL's dummy video/audio drivers before any test
imports it, so the display tests run without a window or sound card:

    python -m pytest                 # everything
    python -m pytest -m "not display"
"""

import os

# Must be set before pygame initialises SDL.
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "display: tests that open a pygame display (SDL dummy driver)")
