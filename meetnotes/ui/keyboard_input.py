"""Single-key terminal input for the recording screen."""

import logging
import sys
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

KeyCallback = Callable[[str], bool]


def read_key(timeout: float = 0.1) -> Optional[str]:
    """Return one lower-cased key if pressed within ``timeout`` seconds."""
    if sys.platform == "win32":
        import msvcrt
        if msvcrt.kbhit():
            return msvcrt.getch().decode('utf-8', errors='ignore').lower()
        threading.Event().wait(timeout)
        return None

    import select
    import termios
    import tty

    if not sys.stdin.isatty():
        threading.Event().wait(timeout)
        return None
    if not select.select([sys.stdin], [], [], timeout)[0]:
        return None
    old_settings = termios.tcgetattr(sys.stdin)
    try:
        tty.setraw(sys.stdin.fileno())
        return sys.stdin.read(1).lower()
    finally:
        termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)


class KeyboardInputHandler:
    """Reads keys on a daemon thread and hands each one to ``callback``.

    The callback returns False to end the loop.
    """

    def __init__(self, callback: KeyCallback, reader: Callable[[], Optional[str]] = read_key):
        self.callback = callback
        self.reader = reader
        self._stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.thread is not None:
            return
        self.thread = threading.Thread(target=self._input_loop, name="KeyboardInput", daemon=True)
        self.thread.start()
        logger.info("Keyboard input handler started")

    def stop(self) -> None:
        self._stop_event.set()
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=1.0)
        logger.info("Keyboard input handler stopped")

    def _input_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                key = self.reader()
            except (OSError, ValueError) as e:
                logger.error(f"Keyboard input unavailable: {e}")
                return
            if key and not self.callback(key):
                logger.info("Input callback asked to stop")
                return
