"""CLI entrypoint for polyrun."""

from __future__ import annotations

import argparse
import logging
import sys

from pathlib import Path
from typing import Optional

import yaml

from dotenv import load_dotenv

from polyrun.configuration import (
    DEFAULT_CONFIG_NAME,
    PolyrunSettings,
    build_dispatcher,
    build_settings,
    load_config,
)
from polyrun.dispatcher import Dispatcher
from polyrun.exceptions import ScriptRunnerError
from polyrun.logging import setup_file_logger
from polyrun.options import RunOptions

ERROR_EXIT_CODE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polyrun",
        description="Run scripts with any registered scripting language runner.",
    )
    parser.add_argument(
        "script",
        nargs="?",
        type=str,
        help="Script path, file URI or '<Runner>:<path>' identifier.",
    )
    parser.add_argument(
        "script_args",
        nargs=argparse.REMAINDER,
        help="Arguments passed verbatim to the script.",
    )
    parser.add_argument(
        "-e",
        "--eval",
        type=str,
        help="Evaluate inline code (use --lang or a '<Runner>:' prefix).",
    )
    parser.add_argument(
        "-l",
        "--lang",
        type=str,
        help="Runner name, type or extension to use.",
    )
    parser.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Start an interactive session.",
    )
    parser.add_argument(
        "--test",
        action="store_true",
        help="Run the script in test mode.",
    )
    parser.add_argument(
        "--image-dir",
        type=str,
        help="Fixture directory for --test (default: the script's folder).",
    )
    parser.add_argument(
        "--before",
        action="append",
        default=[],
        help="Statement executed before the script (repeatable).",
    )
    parser.add_argument(
        "--after",
        action="append",
        default=[],
        help="Statement executed after the script (repeatable).",
    )
    parser.add_argument(
        "--list-runners",
        action="store_true",
        help="List registered runners and exit.",
    )
    parser.add_argument(
        "--runner-help",
        action="store_true",
        help="Show the command line help of every runner and exit.",
    )
    parser.add_argument(
        "--config",
        type=str,
        help=f"Path to a YAML config (default: ./{DEFAULT_CONFIG_NAME} if present).",
    )
    parser.add_argument(
        "--silent",
        action="store_true",
        help="Suppress runner chatter.",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Write a rotating log to this file.",
    )
    return parser


def _load_settings(args: argparse.Namespace) -> PolyrunSettings:
    if args.config:
        config_path = Path(args.config).expanduser()
        config = load_config(config_path)
    else:
        config_path = Path.cwd() / DEFAULT_CONFIG_NAME
        config = load_config(config_path) if config_path.exists() else {}
    return build_settings(config, config_root=config_path.resolve().parent)


def _list_runners(dispatcher: Dispatcher) -> int:
    registry = dispatcher.registry
    if not len(registry):
        print("No runners registered.", file=sys.stderr)
        return 0
    for runner in registry:
        exts = ", ".join(f".{ext}" for ext in runner.extensions)
        status = "supported" if runner.is_supported() else "unsupported"
        print(f"{runner.label:<12} {runner.type:<18} {exts:<14} {status}")
    return 0


def _dispatch(
    dispatcher: Dispatcher,
    args: argparse.Namespace,
    options: RunOptions,
    parser: argparse.ArgumentParser,
) -> int:
    if args.eval is not None:
        return dispatcher.eval_script(args.eval, options, language=args.lang)
    if args.interactive:
        return dispatcher.run_interactive(args.lang, args.script_args)
    if args.script is None:
        parser.error("a script, --eval or --interactive is required")
    if args.test:
        return dispatcher.run_test(
            args.script,
            args.image_dir,
            args.script_args,
            options,
            language=args.lang,
        )
    return dispatcher.run_script(
        args.script, args.script_args, options, language=args.lang
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        load_dotenv()
    except Exception:
        pass

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.WARNING,
            format="%(levelname)s %(name)s: %(message)s",
        )

    try:
        settings = _load_settings(args)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"polyrun: {exc}", file=sys.stderr)
        return ERROR_EXIT_CODE
    log_file = Path(args.log_file) if args.log_file else settings.logging.file
    if log_file is not None:
        setup_file_logger(
            log_file,
            level=settings.logging.level,
            max_bytes=settings.logging.max_bytes,
            backup_count=settings.logging.backup_count,
        )

    with build_dispatcher(settings) as dispatcher:
        if args.list_runners:
            return _list_runners(dispatcher)
        if args.runner_help:
            print(dispatcher.command_line_help(), end="")
            return 0
        dispatcher.exec_before(args.before)
        dispatcher.exec_after(args.after)
        options = RunOptions(silent=args.silent)
        try:
            exit_code = _dispatch(dispatcher, args, options, parser)
        except ScriptRunnerError as exc:
            print(f"polyrun: {exc}", file=sys.stderr)
            return ERROR_EXIT_CODE
    if options.failed:
        print(
            f"polyrun: script failed at line {options.error_line}",
            file=sys.stderr,
        )
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
