import argparse
import asyncio
import contextlib
import logging
import os
import sys

from riglink.common import logging_config
from riglink.common.logging_config import TRACE, configure_logging
from riglink.config import Config
from riglink.constants import APP_NAME, LOG_LEVEL
from riglink.services.rig_models import group_models
from riglink.session import RigSession
from riglink.state import ActionResult

MODES = ("monitor", "diagnose", "command", "caps", "models")


def build_parser() -> argparse.ArgumentParser:
    env = Config.from_env()
    parser = argparse.ArgumentParser(prog="riglink", description=f"{APP_NAME} rigctld client")
    parser.add_argument(
        "mode",
        nargs="?",
        choices=MODES,
        default="monitor",
        help="monitor: connect and poll; diagnose: connectivity report; "
        "command: send one raw command; caps: dump capabilities; models: list rig models",
    )
    parser.add_argument("words", nargs="*", help="Raw command for 'command' mode, e.g. f or F 14074000")
    parser.add_argument("--host", default=env.HOST, help="rigctld host")
    parser.add_argument("--port", type=int, default=env.PORT, help="rigctld TCP port")
    parser.add_argument("--model", type=int, default=env.RIG_MODEL, help="Hamlib rig model number")
    parser.add_argument("--device", default=env.DEVICE, help="Serial device of the rig")
    parser.add_argument("--rigctld-path", default=env.RIGCTLD_PATH, help="Path to the rigctld executable")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop monitoring after this many seconds (default: run until interrupted)",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set log level",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE with wire dumps",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Enable WARNING logging")
    parser.add_argument(
        "--disable-auto-start",
        action="store_false",
        dest="auto_start",
        default=env.AUTO_START,
        help="Do not start rigctld automatically (overrides RIGLINK_AUTO_START)",
    )
    return parser


def resolve_log_level(args: argparse.Namespace) -> int:
    # Priority: explicit --log-level > -v/-q > env default from constants
    if args.log_level:
        if args.log_level == "TRACE":
            return TRACE
        return getattr(logging, args.log_level)
    if args.verbose >= 3:
        os.environ["RIGLINK_TRACE"] = "1"
        logging_config.TRACE_ENABLED = True
        return TRACE
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.WARNING
    return LOG_LEVEL


def config_from_args(args: argparse.Namespace) -> Config:
    cfg = Config.from_env()
    cfg.HOST = args.host
    cfg.PORT = int(args.port)
    cfg.RIG_MODEL = int(args.model)
    cfg.DEVICE = args.device
    cfg.RIGCTLD_PATH = args.rigctld_path
    cfg.AUTO_START = args.auto_start
    return cfg


def _report_failure(result: ActionResult) -> int:
    print(f"Error: {result.error}", file=sys.stderr)
    for hint in result.suggestions:
        print(f"  - {hint}", file=sys.stderr)
    return 1


async def _monitor(session: RigSession, duration: float | None) -> int:
    await session.prepare()
    result = await session.connect()
    if not result.success:
        return _report_failure(result)

    session.start_polling()
    loop = asyncio.get_running_loop()
    deadline = None if duration is None else loop.time() + duration
    try:
        while session.connected and (deadline is None or loop.time() < deadline):
            s = session.state
            logging.info(
                "%.3f kHz %s/%d %s ptt=%s split=%s rit=%d xit=%d S=%s (%s)",
                s.frequency_hz / 1000,
                s.mode,
                s.passband_hz,
                s.vfo,
                s.ptt,
                s.split,
                s.rit_hz,
                s.xit_hz,
                s.signal_strength,
                session.smeter.status_text,
            )
            await asyncio.sleep(session.poller.main_interval)
    finally:
        await session.stop_polling()
    if not session.connected and session.connection.last_error:
        print(f"Connection lost: {session.connection.last_error}", file=sys.stderr)
        return 1
    return 0


async def _diagnose(session: RigSession) -> int:
    result = await session.run_diagnostics()
    if not result.success:
        return _report_failure(result)
    report = result.data
    for name, value in report.flags().items():
        print(f"{name:<22} {'yes' if value else 'no'}")
    if report.process_pid is not None:
        print(f"{'process':<22} {report.process_path} (pid {report.process_pid})")
    if report.firewall_error:
        print(f"{'firewall_error':<22} {report.firewall_error}")
    for hint in report.suggestions:
        print(f"- {hint}")
    return 0


async def _command(session: RigSession, words: list[str]) -> int:
    if not words:
        print("Error: 'command' mode needs a rigctld command, e.g. 'riglink command f'", file=sys.stderr)
        return 2
    result = await session.connect()
    if not result.success:
        return _report_failure(result)
    result = await session.send_command(" ".join(words))
    if not result.success:
        return _report_failure(result)
    for value in result.data or []:
        print(value)
    return 0


async def _caps(session: RigSession) -> int:
    result = await session.connect()
    if not result.success:
        return _report_failure(result)
    result = await session.get_capabilities()
    if not result.success:
        return _report_failure(result)
    caps = result.data
    print(f"{caps.mfg_name} {caps.model_name} (backend {caps.backend_version})")
    print(f"Modes:     {' '.join(caps.modes)}")
    print(f"VFOs:      {' '.join(caps.vfos)}")
    print(f"Functions: {' '.join(caps.functions)}")
    print(f"Levels:    {' '.join(caps.levels)}")
    return 0


async def _models(session: RigSession) -> int:
    result = await session.list_rig_models()
    if not result.success:
        return _report_failure(result)
    for manufacturer, models in group_models(result.data).items():
        print(manufacturer)
        for model in models:
            print(f"  {model.id:>6}  {model.model}  [{model.status}]")
    return 0


async def run(args: argparse.Namespace) -> int:
    async with RigSession(config_from_args(args)) as session:
        if args.mode == "diagnose":
            return await _diagnose(session)
        if args.mode == "command":
            return await _command(session, args.words)
        if args.mode == "caps":
            return await _caps(session)
        if args.mode == "models":
            return await _models(session)
        return await _monitor(session, args.duration)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(resolve_log_level(args))
    logging.info("rigctld target: host=%s port=%s model=%s", args.host, args.port, args.model)

    code = 130
    with contextlib.suppress(KeyboardInterrupt):
        code = asyncio.run(run(args))
    return code


if __name__ == "__main__":
    sys.exit(main())
