"""REST API for indi-autodetect."""

from indi_autodetect.web.app import create_app

__all__ = ["create_app"]
