"""RiddleBridge HTTP API."""

from riddlebridge.api.app import create_app, run
from riddlebridge.api.container import BridgeApp

__all__ = ["BridgeApp", "create_app", "run"]
