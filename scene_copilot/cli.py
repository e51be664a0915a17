"""scene-copilot command-line front end.

    scene-copilot run script.py           # Execute a script file
    scene-copilot run -c "print(1)"       # Execute inline code
    scene-copilot check script.py         # Syntax check only
    scene-copilot ask "add a red cube"    # Generate → confirm → execute
    scene-copilot history                 # Show execution history
    scene-copilot settings show           # Show current settings
    scene-copilot serve                   # Start the bridge server
"""

import argparse
import logging
import sys
from dataclasses import fields
from pathlib import Path

import yaml

from .context import WorkflowType
from .errors import CopilotError
from .settings import CopilotSettings
from .service import CopilotService

CONFIRM_PREVIEW_CHARS = 500
SECRET_FIELDS = ("api_key", "encrypted_api_key")


# Colors for terminal output
class C:
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    DIM = "\033[2m"
    END = "\033[0m"

    @staticmethod
    def ok(msg): return f"{C.GREEN}✓{C.END} {msg}"
    @staticmethod
    def warn(msg): return f"{C.YELLOW}⚠{C.END} {msg}"
    @staticmethod
    def err(msg): return f"{C.RED}✗{C.END} {msg}"
    @staticmethod
    def info(msg): return f"{C.BLUE}ℹ{C.END} {msg}"


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _read_code(args) -> str:
    if args.code is not None:
        return args.code
    if args.file == "-":
        return sys.stdin.read()
    return Path(args.file).read_text(encoding="utf-8")


def _print_result(result):
    if result.stdout_output:
        print(result.stdout_output, end="" if result.stdout_output.endswith("\n") else "\n")
    if result.success:
        print(C.ok(f"Executed in {result.elapsed_seconds:.2f}s"))
        return 0
    where = f" (line {result.error_line})" if result.error_line >= 0 else ""
    print(C.err(f"{result.error_kind.value} error{where}: {result.error_message}"))
    if result.stack_trace:
        print(f"{C.DIM}{result.stack_trace.rstrip()}{C.END}")
    return 1


def _mask(value: str) -> str:
    if not value:
        return ""
    return value[:3] + "…" + value[-4:] if len(value) > 8 else "****"


# ── Commands ──────────────────────────────────────────────────────────────

def cmd_run(service, args):
    return _print_result(service.execution.execute(_read_code(args)))


def cmd_check(service, args):
    ok, error = service.execution.validate_syntax(_read_code(args))
    if ok:
        print(C.ok("Syntax OK"))
        return 0
    print(C.err(error))
    return 1


def _confirm(code: str) -> bool:
    preview = code[:CONFIRM_PREVIEW_CHARS]
    if len(code) > CONFIRM_PREVIEW_CHARS:
        preview += "\n..."
    print(f"\n{C.BOLD}Generated code:{C.END}\n{preview}\n")
    try:
        answer = input("Execute this code? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def cmd_ask(service, args):
    workflow = WorkflowType(args.workflow) if args.workflow else None
    print(C.info(f"Asking {service.settings.model}..."))
    result = service.generate_and_wait(args.prompt, workflow=workflow)
    if not result.success:
        print(C.err(result.error_message))
        return 1
    print(C.ok(f"Generated in {result.elapsed_seconds:.1f}s ({result.tokens_used} tokens)"))

    if args.no_exec:
        print(result.generated_code)
        return 0
    if service.settings.require_user_confirmation and not args.yes:
        if not _confirm(result.generated_code):
            print(C.warn("Execution skipped"))
            return 0
    return _print_result(service.execution.execute(result.generated_code))


def cmd_history(service, args):
    if args.clear:
        service.execution.clear_history()
        print(C.ok("History cleared"))
        return 0

    entries = service.execution.history()
    if not entries:
        print(C.info("No history yet"))
        return 0
    shown = entries[-args.limit:] if args.limit else entries
    start = len(entries) - len(shown)
    for i, entry in enumerate(shown, start):
        mark = C.ok if entry.succeeded else C.err
        stamp = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        print(mark(f"[{i}] {stamp}  {entry.summary.splitlines()[0] if entry.summary else ''}"))
        if args.code:
            for line in entry.code.splitlines():
                print(f"      {C.DIM}{line}{C.END}")
    return 0


def cmd_settings(service, args):
    settings = service.settings

    if args.action == "show":
        data = settings.to_dict()
        for name in SECRET_FIELDS:
            data[name] = _mask(data[name])
        print(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), end="")
        print(C.info(f"Settings file: {service.settings_path}"))
        return 0

    if args.action == "validate":
        ok, error = settings.validate()
        print(C.ok("Settings are valid") if ok else C.err(error))
        return 0 if ok else 1

    if args.action == "set-key":
        service.llm.set_api_key(args.value)
        print(C.ok(f"API key saved → {service.settings_path}"))
        return 0

    # set NAME VALUE
    known = {f.name for f in fields(CopilotSettings)} - set(SECRET_FIELDS)
    if args.name not in known:
        print(C.err(f"Unknown setting '{args.name}'"))
        return 2
    data = settings.to_dict()
    data[args.name] = yaml.safe_load(args.value)
    updated = CopilotSettings.from_dict(data)
    for f in fields(CopilotSettings):
        setattr(settings, f.name, getattr(updated, f.name))
    service.save_settings()
    print(C.ok(f"{args.name} = {getattr(settings, args.name)!r}"))
    return 0


def cmd_serve(service, args):
    from .server import serve
    serve(service, host=args.host, port=args.port)
    return 0


# ── Entry point ───────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scene-copilot",
        description="scene-copilot: generate and run scene scripts with an LLM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  scene-copilot settings set-key sk-...       Store the OpenAI key
  scene-copilot ask "scatter 10 cubes"        Generate, confirm, execute
  scene-copilot ask "..." --no-exec           Only print the generated code
  scene-copilot run tools/cleanup.py          Run a script file
  scene-copilot history --limit 5 --code      Last five runs with code
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--settings", type=Path, default=None,
                        help="Settings YAML (default: ~/.scene_copilot/settings.yaml)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    for name, help_text in (("run", "Execute a script"),
                            ("check", "Syntax-check a script")):
        sub = subparsers.add_parser(name, help=help_text)
        group = sub.add_mutually_exclusive_group(required=True)
        group.add_argument("file", nargs="?", help="Script file ('-' for stdin)")
        group.add_argument("-c", "--code", help="Inline code")

    sub = subparsers.add_parser("ask", help="Generate a script from a prompt")
    sub.add_argument("prompt")
    sub.add_argument("--workflow", choices=[w.value for w in WorkflowType])
    sub.add_argument("-y", "--yes", action="store_true",
                     help="Execute without asking for confirmation")
    sub.add_argument("--no-exec", action="store_true",
                     help="Print the generated code instead of executing it")

    sub = subparsers.add_parser("history", help="Show execution history")
    sub.add_argument("--limit", type=int, default=20)
    sub.add_argument("--code", action="store_true", help="Show the code of each entry")
    sub.add_argument("--clear", action="store_true", help="Clear the history")

    sub = subparsers.add_parser("settings", help="Show or change settings")
    actions = sub.add_subparsers(dest="action", required=True)
    actions.add_parser("show", help="Print current settings")
    actions.add_parser("validate", help="Check settings")
    key = actions.add_parser("set-key", help="Store the API key")
    key.add_argument("value")
    setter = actions.add_parser("set", help="Change one setting")
    setter.add_argument("name")
    setter.add_argument("value", help="YAML value, e.g. 0.2, true, gpt-4o")

    sub = subparsers.add_parser("serve", help="Start the bridge server")
    sub.add_argument("--host", default="127.0.0.1")
    sub.add_argument("--port", type=int, default=8421)

    return parser


COMMANDS = {
    "run": cmd_run,
    "check": cmd_check,
    "ask": cmd_ask,
    "history": cmd_history,
    "settings": cmd_settings,
    "serve": cmd_serve,
}


def main(argv=None, service_factory=CopilotService.create) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        print(f"\n{C.info('Try: scene-copilot settings show')}")
        return 0

    try:
        service = service_factory(args.settings)
    except CopilotError as exc:
        print(C.err(str(exc)))
        return 2

    try:
        return COMMANDS[args.command](service, args)
    except CopilotError as exc:
        print(C.err(str(exc)))
        return 2
    except OSError as exc:
        print(C.err(str(exc)))
        return 1
    finally:
        if args.command != "serve":
            service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
