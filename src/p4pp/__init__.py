import argparse
import logging
import sys
from collections.abc import Sequence
from typing import BinaryIO, cast

from p4pp.cli import Executor, PreprocessorCommand
from p4pp.diag import CommandError
from p4pp.options import PreprocessorOptions

_CMD_PP = "pp"


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="p4",
        description="p4 is a tool for managing P4 source code.",
    )
    commands = parser.add_subparsers(dest="command", metavar="command")
    pp = commands.add_parser(
        _CMD_PP,
        help="invoke a preprocessor on P4 source code read from stdin",
        description="Expand #define and #include directives in P4 source code.",
    )
    pp.add_argument(
        "input",
        nargs="?",
        default="-",
        help="path to a P4 source file, or - to read from stdin (default)",
    )
    pp.add_argument("-D", dest="defines", action="append", default=[], help="define macro")
    pp.add_argument("-I", dest="include_dirs", action="append", default=[], help="include path")
    pp.add_argument(
        "--diag-format",
        choices=("human", "json"),
        default="human",
        help="diagnostic output format",
    )
    pp.add_argument(
        "--dump-macro-table",
        action="store_true",
        help="print final macro table to stderr",
    )
    pp.add_argument(
        "--dump-include-trace",
        action="store_true",
        help="print include resolution trace to stderr",
    )
    pp.add_argument("-v", "--verbose", action="store_true", help="log each directive")
    return parser


def _configure_logging(verbose: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("p4: %(levelname)s: %(message)s"))
    logger = logging.getLogger("p4pp")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return handler


def main(
    argv: Sequence[str] | None = None,
    *,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> int:
    parser = _build_arg_parser()
    effective_argv = list(argv) if argv is not None else sys.argv[1:]
    try:
        args = parser.parse_args(effective_argv)
    except SystemExit as error:
        return cast(int, error.code)
    if args.command is None:
        parser.print_usage(sys.stderr)
        print("p4: no arguments specified", file=sys.stderr)
        return 2
    try:
        options = PreprocessorOptions(
            include_dirs=tuple(args.include_dirs),
            defines=tuple(args.defines),
            diag_format=args.diag_format,
        )
    except ValueError as error:
        print(f"p4: {error}", file=sys.stderr)
        return 2
    logger = logging.getLogger("p4pp")
    level = logger.level
    handler = _configure_logging(args.verbose)
    try:
        return _run_pp(args, options, stdin=stdin, stdout=stdout)
    finally:
        logger.removeHandler(handler)
        logger.setLevel(level)


def _run_pp(
    args: argparse.Namespace,
    options: PreprocessorOptions,
    *,
    stdin: BinaryIO | None,
    stdout: BinaryIO | None,
) -> int:
    writer = sys.stdout.buffer if stdout is None else stdout
    opened: BinaryIO | None = None
    if args.input == "-":
        filename = "<stdin>"
        reader = sys.stdin.buffer if stdin is None else stdin
    else:
        filename = args.input
        try:
            reader = opened = open(args.input, "rb")
        except OSError as error:
            print(f"p4: I/O error: {error}", file=sys.stderr)
            return 1
    executor: Executor = PreprocessorCommand(options, filename=filename)
    try:
        result = executor.execute(writer, reader)
    except CommandError as error:
        if options.diag_format == "json":
            print(error.diagnostic.to_json(), file=sys.stderr)
        else:
            print(f"p4: {error}", file=sys.stderr)
        return 1
    finally:
        if opened is not None:
            opened.close()
    if args.dump_macro_table:
        for line in result.macro_table:
            print(line, file=sys.stderr)
    if args.dump_include_trace:
        for line in result.include_trace:
            print(line, file=sys.stderr)
    return 0


def pp_main(
    argv: Sequence[str] | None = None,
    *,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> int:
    effective_argv = list(argv) if argv is not None else sys.argv[1:]
    return main([_CMD_PP, *effective_argv], stdin=stdin, stdout=stdout)
