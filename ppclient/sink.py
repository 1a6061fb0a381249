from __future__ import annotations

from typing import Optional

from colorama import Fore, Style

from ppclient.models import SimulationResult
from ppclient.utils.logging import get_logger

INFO = "info"
ERROR = "error"


class UiSink:
    """Receiver for everything the poller and simulator want to show.

    The base class ignores every event; subclasses override what they render.
    """

    def on_notify(self, kind: str, message: str, persistent: bool = False) -> None:
        pass

    def on_terminal_success(self, redirect_url: str) -> None:
        pass

    def on_terminal_failure(self, message: str) -> None:
        pass

    def on_results(self, result: SimulationResult) -> None:
        pass


class ConsoleSink(UiSink):
    """Prints events to the terminal in color and mirrors them to the log."""

    def __init__(self, logger=None) -> None:
        self.logger = logger or get_logger("ui")
        self.redirect_url: Optional[str] = None

    def _print(self, color: str, msg: str) -> None:
        print(color + msg + Style.RESET_ALL)

    def on_notify(self, kind: str, message: str, persistent: bool = False) -> None:
        if kind == ERROR:
            self._print(Fore.RED, " ! " + message)
        else:
            self._print(Fore.GREEN, " · " + message)
        # already on screen; the log only needs it for the file handler
        self.logger.debug(message)

    def on_terminal_success(self, redirect_url: str) -> None:
        self.redirect_url = redirect_url
        self._print(Fore.GREEN, f" ✓ Done, see {redirect_url}")

    def on_terminal_failure(self, message: str) -> None:
        self._print(Fore.RED, " ✗ " + message)
        self.logger.debug(message)

    def on_results(self, result: SimulationResult) -> None:
        mods = ",".join(result.mods) if result.mods else "NM"
        self._print(Fore.GREEN, result.beatmap_info)
        self._print(Fore.GREEN, f"   mods     {mods}")
        self._print(Fore.GREEN, f"   accuracy {result.accuracy:.2f}%")
        self._print(Fore.GREEN, f"   combo    {result.combo}/{result.max_combo}x")
        for name, value in sorted(result.category_attribs.items()):
            self._print(Fore.GREEN, f"   {name:<8} {value:.2f}")
        self._print(Fore.GREEN + Style.BRIGHT, f"   pp       {result.pp:.2f}")
