from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from colorama import Fore, Style, init as colorama_init
from dotenv import load_dotenv

from ppclient.config import Settings, load_settings
from ppclient.errors import PPClientError, ValidationError
from ppclient.gateway import HttpGateway
from ppclient.poller import RecalcPoller
from ppclient.simulation import SimulationFields, Simulator
from ppclient.sink import ERROR, ConsoleSink
from ppclient.utils.logging import setup_logger


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ppclient", description="Client for the osu! PP recalculation server")
    p.add_argument("--base-url", help="Server root, e.g. http://localhost:8000 (env PP_BASE_URL)")
    p.add_argument("--timeout", type=float, help="HTTP timeout in seconds (env PP_HTTP_TIMEOUT)")
    p.add_argument("--logfile", help="Also write a timestamped log here (env PP_LOGFILE)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    recalc = sub.add_parser("recalc", help="Recalculate a player's profile and wait for it")
    recalc.add_argument("user", help="osu! username")
    recalc.add_argument("--force", action="store_true", help="Recalculate even if cached results exist")
    recalc.add_argument("--interval-ms", type=int, help="Delay between status checks (env PP_POLL_INTERVAL_MS)")
    recalc.add_argument("--max-polls", type=int, help="Give up after this many checks, 0 = never (env PP_MAX_POLLS)")

    sim = sub.add_parser("simulate", help="Compute PP for a hypothetical play")
    sim.add_argument("--beatmap", required=True, help="Beatmap id or osu! beatmap URL")
    sim.add_argument("--accuracy", help="Accuracy percentage, e.g. 98.5 or 98,5")
    sim.add_argument("--good", help="Number of 100s (used when --accuracy is not given)")
    sim.add_argument("--meh", help="Number of 50s (used when --accuracy is not given)")
    sim.add_argument("--combo", help="Max combo reached")
    sim.add_argument("--misses", help="Number of misses")
    sim.add_argument("--mods", default="", help="Comma-separated mods, e.g. HD,DT")
    return p


def banner() -> None:
    print(Fore.GREEN + Style.BRIGHT + "ppclient" + Style.NORMAL + " · osu! PP recalculator client" + Style.RESET_ALL)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    if args.base_url:
        settings.base_url = args.base_url
    if args.timeout is not None:
        settings.http_timeout = args.timeout
    if args.logfile:
        settings.logfile = args.logfile
    if getattr(args, "interval_ms", None) is not None:
        settings.poll_interval_ms = max(0, args.interval_ms)
    if getattr(args, "max_polls", None) is not None:
        settings.max_polls = max(0, args.max_polls)
    return settings


def _recalc(args: argparse.Namespace, gateway: HttpGateway, sink: ConsoleSink, settings: Settings) -> int:
    poller = RecalcPoller(
        gateway,
        sink,
        interval_ms=settings.poll_interval_ms,
        max_polls=settings.max_polls,
    )
    try:
        session = poller.start(args.user, force=args.force)
    except ValidationError as e:
        sink.on_notify(ERROR, e.message, False)
        return 2
    except PPClientError as e:
        sink.on_notify(ERROR, str(e), True)
        return 1
    try:
        while not session.wait(0.5):
            pass
    except KeyboardInterrupt:
        poller.cancel(args.user)
        session.wait()
    return 0 if session.success else 1


def _simulate(args: argparse.Namespace, gateway: HttpGateway, sink: ConsoleSink) -> int:
    fields = SimulationFields(
        beatmap=args.beatmap,
        accuracy=args.accuracy,
        good=args.good,
        meh=args.meh,
        combo=args.combo,
        misses=args.misses,
        mods=args.mods,
    )
    try:
        Simulator(gateway, sink).submit(fields)
    except ValidationError:
        return 2
    except PPClientError:
        return 1
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    colorama_init(autoreset=True)
    args = build_parser().parse_args(argv)
    settings = _apply_overrides(load_settings(), args)
    setup_logger(logfile=settings.logfile, level=logging.DEBUG if args.verbose else logging.INFO)
    banner()
    gateway = HttpGateway(
        settings.base_url,
        timeout=settings.http_timeout,
        retries=settings.http_retries,
        retry_wait=settings.http_retry_wait,
    )
    sink = ConsoleSink()
    if args.command == "recalc":
        return _recalc(args, gateway, sink, settings)
    return _simulate(args, gateway, sink)
