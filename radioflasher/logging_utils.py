"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Custom Logging Utilities
"""

import logging
import sys


class SingleLineStatusHandler(logging.StreamHandler):
    """
    A logging handler that can overwrite a single line in the console.
    It looks for a 'status' attribute in the log record's 'extra' dict.

    - status='start': prints the message without a newline.
    - status='update': rewrites the active line in place (used for polling
      and stage progress).
    - status='end': rewrites the active line and adds a newline.

    Normal log records will clear any active status line before being printed.
    """

    def __init__(self, stream=None):
        super().__init__(stream or sys.stdout)
        self._status_line_active = False
        self._last_length = 0

    def _rewrite(self, msg):
        padding = " " * max(0, self._last_length - len(msg))
        self.stream.write("\r" + msg + padding)
        self._last_length = len(msg)

    def emit(self, record):
        status = getattr(record, "status", None)
        if self._status_line_active and status is None:
            self.stream.write(self.terminator)
            self._status_line_active = False

        try:
            msg = self.format(record)

            if status == "start":
                self.stream.write(msg)
                self._last_length = len(msg)
                self._status_line_active = True
            elif status == "update":
                self._rewrite(msg)
                self._status_line_active = True
            elif status == "end":
                self._rewrite(msg)
                self.stream.write(self.terminator)
                self._status_line_active = False
                self._last_length = 0
            else:
                self.stream.write(msg + self.terminator)
                self._status_line_active = False

            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool = False) -> SingleLineStatusHandler:
    """Replaces the root handlers with a single status aware console handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    handler = SingleLineStatusHandler()
    if verbose:
        formatter = logging.Formatter(
            "%(levelname)-7s:%(name)-13s:%(lineno)4d: %(message)s"
        )
    else:
        formatter = logging.Formatter("%(message)s")
    handler.setFormatter(formatter)
    root_logger.handlers = [handler]
    return handler
