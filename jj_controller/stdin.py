"""
Terminal input multiplexer.

A single daemon thread reads standard input one byte at a time and hands
each byte to exactly one consumer: an open prompt when there is one,
otherwise the registered keystroke watcher. Consumers never read stdin
themselves, so a cancellation prompt can take the terminal from the
keystroke watcher and give it back without racing it.
"""

import asyncio
import concurrent.futures
import logging
import sys
import threading
from collections.abc import Callable
from typing import BinaryIO

logger = logging.getLogger(__name__)

KeyCallback = Callable[[str], None]


class InputMultiplexer:
    """
    Routes raw terminal input to the current owner.

    Ownership rules:
    - ``prompt()`` takes ownership until a full line (or EOF) arrives
    - otherwise bytes go to the callback set by ``attach_keys()``
    - bytes with no owner are dropped
    """

    def __init__(self, stream: BinaryIO | None = None):
        """
        Initialize the multiplexer.

        Args:
            stream: Binary stream to read from (default: stdin's buffer)
        """
        self.stream = stream if stream is not None else sys.stdin.buffer
        self._lock = threading.Lock()
        self._key_callback: KeyCallback | None = None
        self._prompt_future: concurrent.futures.Future[str] | None = None
        self._prompt_buffer = bytearray()
        self._thread: threading.Thread | None = None
        self._eof = False

    def start(self) -> None:
        """Start the reader thread (idempotent)."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._read_loop, name="jj-stdin", daemon=True
        )
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _read_loop(self) -> None:
        while True:
            try:
                data = self.stream.read(1)
            except (OSError, ValueError) as e:
                logger.debug(f"stdin reader stopped: {e}")
                data = b""
            if not data:
                self._on_eof()
                return
            self.feed(data)

    def feed(self, data: bytes) -> None:
        """Dispatch bytes to the current owner."""
        for byte in data:
            with self._lock:
                future = self._prompt_future
                if future is not None:
                    if byte == 10:
                        line = self._prompt_buffer.decode(errors="replace").rstrip("\r")
                        self._prompt_buffer.clear()
                        self._prompt_future = None
                        future.set_result(line)
                    else:
                        self._prompt_buffer.append(byte)
                    continue
                callback = self._key_callback
            if callback is not None:
                callback(chr(byte))

    def _on_eof(self) -> None:
        with self._lock:
            self._eof = True
            future = self._prompt_future
            self._prompt_future = None
        if future is not None and not future.done():
            future.set_exception(EOFError("stdin closed"))

    def attach_keys(self, callback: KeyCallback) -> None:
        """Register the keystroke consumer, replacing any previous one."""
        with self._lock:
            self._key_callback = callback

    def detach_keys(self) -> None:
        with self._lock:
            self._key_callback = None

    async def prompt(self, text: str, write: Callable[[str], None] | None = None) -> str:
        """
        Ask for one line of input.

        Args:
            text: Prompt text, written before waiting
            write: Output function for the prompt (default: stdout)

        Returns:
            The line entered, without the trailing newline

        Raises:
            EOFError: If input is closed before a line is complete
        """
        future: concurrent.futures.Future[str] = concurrent.futures.Future()
        with self._lock:
            if self._eof:
                raise EOFError("stdin closed")
            if self._prompt_future is not None:
                raise RuntimeError("A prompt is already waiting for input")
            self._prompt_buffer.clear()
            self._prompt_future = future

        if write is None:
            sys.stdout.write(text)
            sys.stdout.flush()
        else:
            write(text)

        self.start()
        try:
            return await asyncio.wrap_future(future)
        finally:
            with self._lock:
                if self._prompt_future is future:
                    self._prompt_future = None
