"""
Integrations with the host operating system used by the POS.

The only external collaborator left is the printer: a rendered ticket is
written to a PDF file and handed to whatever print facility the platform
provides.  Keeping it behind a small class lets the application (and the
tests) swap in a different launcher without touching the renderer.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class PrinterService:
    """Send a PDF file to a print-capable viewer.

    On Windows the file is opened with the shell's ``print`` verb.
    Elsewhere ``lpr`` is used when present, falling back to the desktop
    opener (``xdg-open`` / ``open``) so the user can print from the viewer.

    ``runner`` is what actually executes the command; it defaults to
    :func:`subprocess.run` with ``check=True``.
    """

    def __init__(self, runner: Optional[Callable[[List[str]], object]] = None) -> None:
        self._runner = runner or (lambda cmd: subprocess.run(cmd, check=True))

    def command_for(self, path: str) -> List[str]:
        if sys.platform == "darwin":
            return ["lpr", path] if shutil.which("lpr") else ["open", path]
        if shutil.which("lpr"):
            return ["lpr", path]
        return ["xdg-open", path]

    def print_file(self, path: str) -> None:
        """Print ``path``.  Errors from the platform propagate to the caller."""
        if sys.platform.startswith("win"):
            os.startfile(path, "print")  # type: ignore[attr-defined]
            return
        cmd = self.command_for(path)
        logger.info("Sending ticket to printer", extra={"extra": {"command": cmd}})
        self._runner(cmd)


# Default instance shared by the application
printer_service = PrinterService()
