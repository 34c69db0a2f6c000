"""Turn orchestration: selection, lifecycle transitions, offering and completion."""

from .offering import TurnOffering
from .results import ErrorKind, Result
from .notifications import SocketIONotifier

__all__ = ['TurnOffering', 'ErrorKind', 'Result', 'SocketIONotifier']
