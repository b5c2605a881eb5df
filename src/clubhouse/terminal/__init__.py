from clubhouse.terminal.manager import PtyManager, SessionLimitError
from clubhouse.terminal.pty_session import PTYSession

__all__ = ["PTYSession", "PtyManager", "SessionLimitError"]
