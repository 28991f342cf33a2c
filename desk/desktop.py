"""
Desktop shell: the registry of mini-apps.

Opening an app initialises its controller on first use and returns its
rendered view; closing just marks it closed. Presentation is left to the
caller.
"""

import logging
from typing import Any, Dict, Optional, Set

from shared.models import DeskConfig
from .music import MusicController
from .notes import NotesController
from .photos import PhotosController

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Welcome to your desk."


class MessageApp:
    """Static message viewer; no storage behind it."""

    app_name = "message"

    def __init__(self, message: str = DEFAULT_MESSAGE):
        self.message = message
        self.initialized = False

    async def init(self) -> None:
        self.initialized = True

    def render(self) -> Dict[str, Any]:
        return {'app': self.app_name, 'message': self.message}


class Desktop:
    """Holds one controller per app and dispatches open/close to them."""

    def __init__(self, gateway, config: Optional[DeskConfig] = None, message: str = DEFAULT_MESSAGE):
        retry = {}
        if config is not None:
            retry = {'max_save_attempts': config.max_save_attempts,
                     'retry_backoff': config.retry_backoff}

        self.gateway = gateway
        self.apps = {
            'photos': PhotosController(gateway, **retry),
            'notes': NotesController(gateway, **retry),
            'music': MusicController(gateway, **retry),
            'message': MessageApp(message),
        }
        self.open_apps: Set[str] = set()

    def app(self, name: str):
        try:
            return self.apps[name]
        except KeyError:
            raise KeyError(f"Unknown app: {name}") from None

    async def open_app(self, name: str) -> Dict[str, Any]:
        """
        Raises:
            KeyError: Unknown app name
            StorageError: Initial load failed
        """
        controller = self.app(name)
        if not controller.initialized:
            await controller.init()
        self.open_apps.add(name)
        logger.debug(f"Opened {name}")
        return controller.render()

    def close_app(self, name: str) -> None:
        self.app(name)
        self.open_apps.discard(name)
