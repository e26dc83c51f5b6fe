"""Main CLI entry point for clix."""

import argparse
import sys
from typing import Optional

from .commands import convert_function_command, run_workflow, validate_workflow


def _add_logging_flags(parser: argparse.ArgumentParser):
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Suppress non-error output'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    parser.add_argument(
        '--log-level',
        choices=['debug', 'info', 'warn', 'error'],
        default='warn',
        help='Set log level'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the clix CLI."""
    parser = argparse.ArgumentParser(
        prog='clix',
        description='Replay shell commands and workflows'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a workflow')
    run_parser.add_argument(
        'workflow',
        type=str,
        help='Path to workflow YAML or JSON file'
    )
    run_parser.add_argument(
        '--profile',
        type=str,
        help='Profile supplying variable values'
    )
    run_parser.add_argument(
        '--var',
        action='append',
        metavar='KEY=VALUE',
        help='Variable value (can be specified multiple times)'
    )
    run_parser.add_argument(
        '--var-file',
        type=str,
        help='Path to JSON file containing variable values'
    )
    run_parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Approve every step that requires approval'
    )
    run_parser.add_argument(
        '--non-interactive',
        action='store_true',
        help='Never prompt; missing required variables fail the run'
    )
    run_parser.add_argument(
        '--max-loop-iterations',
        type=int,
        default=1000,
        help='Iteration cap for while loops'
    )
    run_parser.add_argument(
        '--shell',
        type=str,
        help='Shell binary (default: $CLIX_SHELL or bash)'
    )
    run_parser.add_argument(
        '--state-dir',
        type=str,
        help='Override default run log directory (.clix/runs)'
    )
    run_parser.add_argument(
        '--no-record',
        action='store_true',
        help='Do not write a run log'
    )
    _add_logging_flags(run_parser)

    # Convert command
    convert_parser = subparsers.add_parser('convert', help='Convert a shell function into a workflow')
    convert_parser.add_argument(
        'script',
        type=str,
        help='Path to the shell script defining the function'
    )
    convert_parser.add_argument(
        'function',
        type=str,
        nargs='?',
        help='Function name'
    )
    convert_parser.add_argument(
        '--list',
        action='store_true',
        help='List the functions defined in the script'
    )
    convert_parser.add_argument(
        '--name',
        type=str,
        help='Workflow name (default: the function name)'
    )
    convert_parser.add_argument(
        '--description',
        type=str,
        help='Workflow description'
    )
    convert_parser.add_argument(
        '--tag',
        action='append',
        help='Workflow tag (can be specified multiple times)'
    )
    convert_parser.add_argument(
        '--approve-dangerous',
        action='store_true',
        help='Require approval for destructive commands and conditions'
    )
    convert_parser.add_argument(
        '--default',
        action='append',
        metavar='KEY=VALUE',
        help='Default value for a converted parameter (can be specified multiple times)'
    )
    convert_parser.add_argument(
        '--output', '-o',
        type=str,
        help='Write the workflow to FILE (.json for JSON, YAML otherwise)'
    )
    _add_logging_flags(convert_parser)

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate a workflow file')
    validate_parser.add_argument(
        'workflow',
        type=str,
        help='Path to workflow YAML or JSON file'
    )
    _add_logging_flags(validate_parser)

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == 'run':
        return run_workflow(parsed_args)
    elif parsed_args.command == 'convert':
        return convert_function_command(parsed_args)
    elif parsed_args.command == 'validate':
        return validate_workflow(parsed_args)
    else:
        parser.print_help()
        return 1


if __name__ == '__main__':
    sys.exit(main())
