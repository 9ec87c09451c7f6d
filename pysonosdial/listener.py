from abc import ABC, abstractmethod
from typing import Any, List
import logging


class DialListener(ABC):
    """Receives everything a dial wants to show or store in the host UI."""

    @abstractmethod
    def set_feedback(self, action_id: str, value: int, opacity: float):
        """Show a volume on the dial's numeric indicator and gauge.

        Args:
            action_id: Dial instance the feedback is for
            value: Volume 0-100
            opacity: 0.5 while muted, 1.0 otherwise
        """
        pass

    @abstractmethod
    def set_settings(self, action_id: str, settings: dict[str, Any]):
        """Persist the dial's settings in their stored form."""
        pass

    def show_alert(self, action_id: str, message: str):
        # By default, do nothing but can be overwritten to be notified of these messages.
        pass


class MultiplexingListener(DialListener):

    _listeners: List[DialListener]

    def __init__(self):
        self._listeners = []

    def set_feedback(self, action_id: str, value: int, opacity: float):
        for listener in self._listeners:
            listener.set_feedback(action_id, value, opacity)

    def set_settings(self, action_id: str, settings: dict[str, Any]):
        for listener in self._listeners:
            listener.set_settings(action_id, settings)

    def show_alert(self, action_id: str, message: str):
        for listener in self._listeners:
            listener.show_alert(action_id, message)

    def register_listener(self, listener: DialListener):
        self._listeners.append(listener)

    def unregister_listener(self, listener: DialListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            logging.info("Listener isn't registered")


class LoggingListener(DialListener):

    def __init__(self, logger = logging):
        self.logger = logger

    def set_feedback(self, action_id: str, value: int, opacity: float):
        muted = " (muted)" if opacity < 1.0 else ""
        self.logger.info(f"Dial {action_id} shows volume {value}{muted}")

    def set_settings(self, action_id: str, settings: dict[str, Any]):
        self.logger.info(f"Dial {action_id} settings: {settings}")

    def show_alert(self, action_id: str, message: str):
        self.logger.warning(f"Dial {action_id} alert: {message}")
