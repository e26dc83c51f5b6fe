"""Convert command implementation."""

import logging
import sys
from argparse import Namespace
from pathlib import Path

from clix.convert import FunctionConverter, list_functions
from clix.exceptions import ClixError
from clix.loader import dump_workflow

from .run import configure_logging, parse_assignments


logger = logging.getLogger(__name__)


def convert_function_command(args: Namespace) -> int:
    """Convert one shell function into a workflow file (or list the functions)."""
    configure_logging(args)

    script_path = Path(args.script)
    try:
        script_text = script_path.read_text(encoding='utf-8')
    except OSError as e:
        logger.error(f"Cannot read script: {e}")
        return 1

    if args.list:
        for name in list_functions(script_text):
            print(name)
        return 0

    if not args.function:
        logger.error("A function name is required (or use --list)")
        return 2

    try:
        var_defaults = parse_assignments(args.default, label="default")
    except ValueError as e:
        logger.error(str(e))
        return 2

    converter = FunctionConverter(approve_dangerous=args.approve_dangerous, var_defaults=var_defaults)
    try:
        workflow = converter.convert(
            script_text,
            args.function,
            workflow_name=args.name,
            description=args.description,
            tags=args.tag
        )
    except ClixError as e:
        print(f"{script_path}: {e}", file=sys.stderr)
        return e.exit_code

    if args.output:
        output = Path(args.output)
        fmt = "json" if output.suffix.lower() == ".json" else "yaml"
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(dump_workflow(workflow, fmt), encoding='utf-8')
        logger.info(f"Wrote workflow '{workflow.name}' to {output}")
    else:
        sys.stdout.write(dump_workflow(workflow))

    return 0
