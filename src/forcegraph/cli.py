"""Command-line interface: render CSV edge lists to force graph SVG."""
from __future__ import annotations

import argparse
import csv
import io
import json
import logging
import math
import os
import re
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .colors import ColorContext
from .columns import KNOWN_ROLES, SOURCE_ROLE, TARGET_ROLE, WEIGHT_ROLE, ColumnDescriptor, ColumnType, DataView
from .graph import WeightPolicy
from .resources import CapabilityError, load_capabilities_text
from .simulation import ManualScheduler
from .visual import ForceGraph


class ForceGraphError(ValueError):
    """Structured input error with a stable code for CLI mapping."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    line: Optional[int] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="forcegraph",
        description="Render source/target tables as force-directed graph SVG.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")

    subparsers = parser.add_subparsers(dest="command")

    render_parser = subparsers.add_parser("render", help="Render a CSV edge list to SVG")
    render_parser.add_argument("input", nargs="?", help="Input .csv file (stdin when omitted)")
    render_parser.add_argument("--stdout", action="store_true", help="Write SVG to stdout")
    render_parser.add_argument("-o", "--output", help="Output .svg path")
    render_parser.add_argument("--width", type=float, default=1000.0)
    render_parser.add_argument("--height", type=float, default=500.0)
    render_parser.add_argument("--settings", help="JSON file with format settings objects")
    render_parser.add_argument("--settings-json", help="Raw JSON format settings objects")
    render_parser.add_argument("--high-contrast", action="store_true")
    render_parser.add_argument("--background", default="#000000")
    render_parser.add_argument("--foreground", default="#ffffff")
    render_parser.add_argument(
        "--weight-policy",
        choices=[policy.value for policy in WeightPolicy],
        default=WeightPolicy.SUM.value,
    )
    render_parser.add_argument("--seed", type=int, default=0)
    for role in KNOWN_ROLES:
        render_parser.add_argument(
            f"--{_dash(role)}-column",
            dest=f"{_dash(role).replace('-', '_')}_column",
            metavar="NAME",
            help=f"CSV header bound to the {role} role",
        )

    subparsers.add_parser("capabilities", help="Print the capability descriptor JSON")
    return parser


def _dash(role: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", role).lower()


def _normalize_header(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())


def _read_input(path: Optional[str]) -> tuple[str, Optional[Path]]:
    if path:
        input_path = Path(path)
        if not input_path.exists():
            raise CliError(
                "E_IO_READ",
                f"input file not found: {input_path}",
                exit_code=2,
                file=str(input_path),
            )
        try:
            return input_path.read_text(encoding="utf-8"), input_path
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"failed to read input file: {input_path}",
                hint=str(exc),
                exit_code=2,
                file=str(input_path),
            )

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Pass a CSV file or pipe CSV into stdin.",
            exit_code=2,
        )
    data = sys.stdin.read()
    if not data.strip():
        raise CliError("E_ARGS", "stdin was empty", hint="Pipe CSV content into stdin.", exit_code=2)
    return data, None


def _parse_weight(value: str, line: int) -> Optional[float]:
    value = value.strip()
    if not value:
        return None
    try:
        weight = float(value)
    except ValueError:
        raise ForceGraphError("E_CSV_WEIGHT", f"line {line}: weight {value!r} is not a number")
    if not math.isfinite(weight):
        raise ForceGraphError("E_CSV_WEIGHT", f"line {line}: weight {value!r} is not a finite number")
    return weight


def data_view_from_csv(
    text: str,
    *,
    overrides: Optional[Dict[str, str]] = None,
    objects: Optional[Dict[str, Any]] = None,
) -> DataView:
    """Bind CSV headers to roles by name (case and punctuation insensitive)."""
    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader)
    except StopIteration:
        raise ForceGraphError("E_CSV_EMPTY", "CSV input has no header row")

    overrides = overrides or {}
    role_by_index: Dict[int, str] = {}
    for role in KNOWN_ROLES:
        wanted = _normalize_header(overrides.get(role) or role)
        for idx, name in enumerate(header):
            if idx not in role_by_index and _normalize_header(name) == wanted:
                role_by_index[idx] = role
                break
        else:
            if role in overrides:
                raise ForceGraphError("E_CSV_COLUMN", f"column {overrides[role]!r} not found in CSV header")

    bound = set(role_by_index.values())
    for role in (SOURCE_ROLE, TARGET_ROLE):
        if role not in bound:
            raise ForceGraphError(
                "E_CSV_COLUMN", f"CSV header has no {role} column (headers: {', '.join(header)})"
            )

    columns = [
        ColumnDescriptor(
            display_name=name,
            roles=frozenset({role_by_index[idx]}) if idx in role_by_index else frozenset(),
            type=ColumnType.NUMERIC if role_by_index.get(idx) == WEIGHT_ROLE else ColumnType.TEXT,
            query_name=name,
        )
        for idx, name in enumerate(header)
    ]
    weight_idx = next((idx for idx, role in role_by_index.items() if role == WEIGHT_ROLE), None)
    rows: List[List[Any]] = []
    for line, record in enumerate(reader, start=2):
        if not any(cell.strip() for cell in record):
            continue
        values: List[Any] = list(record) + [""] * (len(header) - len(record))
        if weight_idx is not None:
            values[weight_idx] = _parse_weight(values[weight_idx], line)
        rows.append(values)
    return DataView(columns=columns, rows=rows, objects=objects)


def _load_objects(args: argparse.Namespace) -> Optional[Dict[str, Any]]:
    if args.settings and args.settings_json:
        raise CliError(
            "E_ARGS",
            "--settings and --settings-json are mutually exclusive",
            hint="Choose either a settings file or inline JSON.",
            exit_code=2,
        )
    raw: Optional[str] = args.settings_json
    source = "<settings-json>"
    if args.settings:
        path = Path(args.settings)
        source = str(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"failed to read settings file: {path}",
                hint=str(exc),
                exit_code=2,
                file=str(path),
            )
    if raw is None:
        return None
    try:
        objects = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CliError(
            "E_SETTINGS",
            f"settings are not valid JSON: {exc.msg}",
            hint="Provide an object like {\"labels\": {\"show\": true}}.",
            exit_code=2,
            file=source,
            line=exc.lineno,
        )
    if not isinstance(objects, dict):
        raise CliError(
            "E_SETTINGS",
            "settings JSON must be an object",
            hint="Provide an object like {\"labels\": {\"show\": true}}.",
            exit_code=2,
            file=source,
        )
    return objects


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, ForceGraphError):
        return CliError(
            exc.code,
            exc.message,
            hint="Check the CSV header and values.",
            exit_code=3,
        )
    if isinstance(exc, CapabilityError):
        return CliError(
            exc.code,
            exc.message,
            hint="The packaged capabilities.json is inconsistent; reinstall forcegraph.",
            exit_code=1,
            retryable=False,
        )
    if isinstance(exc, csv.Error):
        return CliError(
            "E_PARSE_CSV",
            f"failed to parse CSV: {exc}",
            hint="Ensure the input is comma separated with a header row.",
            exit_code=2,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "line": err.line,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _handle_render(args: argparse.Namespace) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )
    if args.width <= 0 or args.height <= 0:
        raise CliError(
            "E_ARGS",
            "--width and --height must be > 0",
            hint="Use a positive canvas size like 1000x500.",
            exit_code=2,
        )

    source, source_path = _read_input(args.input)
    overrides = {
        role: getattr(args, f"{_dash(role).replace('-', '_')}_column")
        for role in KNOWN_ROLES
        if getattr(args, f"{_dash(role).replace('-', '_')}_column")
    }
    data_view = data_view_from_csv(source, overrides=overrides, objects=_load_objects(args))
    # Rendering a file is a single frame: force the settle-then-draw path.
    objects = dict(data_view.objects or {})
    objects["animation"] = {**(objects.get("animation") or {}), "show": False}
    data_view.objects = objects

    color_context = (
        ColorContext.high_contrast(args.background, args.foreground) if args.high_contrast else None
    )
    visual = ForceGraph(
        args.width,
        args.height,
        scheduler=ManualScheduler(),
        weight_policy=WeightPolicy(args.weight_policy),
        seed=args.seed,
    )
    visual.update(data_view, color_context=color_context)
    svg_text = visual.to_svg()

    if args.stdout or (source_path is None and not args.output):
        sys.stdout.write(svg_text)
        if not svg_text.endswith("\n"):
            sys.stdout.write("\n")
        return 0

    output_path = Path(args.output) if args.output else source_path.with_suffix(".svg")
    _write_text(output_path, svg_text)
    print(f"Wrote {output_path}")
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: render, capabilities.",
            exit_code=2,
        )
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("FORCEGRAPH_DEBUG") == "1"
    logging.basicConfig(
        level=logging.DEBUG if debug_enabled else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format

        if args.command == "render":
            return _handle_render(args)
        if args.command == "capabilities":
            print(load_capabilities_text().rstrip("\n"))
            return 0

        raise CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: render, capabilities.",
            exit_code=2,
        )
    except UsageError as exc:
        err = CliError(
            "E_ARGS",
            str(exc),
            hint="Use subcommands: render, capabilities.",
            exit_code=2,
        )
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in integration tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
