#!/usr/bin/env python3
"""Print CloudFormation stack outputs using boto3.

Usage::

    python3 cfn_output.py -s <stack-name-or-arn>
    python3 cfn_output.py -s MyStack -j -o outputs.json
    python3 cfn_output.py -s MyStack -t config.env.j2 -o config.env
    python3 cfn_output.py -s MyStack --region eu-west-1 --profile dev

By default prints one ``key<TAB>value`` line per output, sorted by key.
``-j`` prints a JSON object instead; ``-t`` renders a Jinja2 template
(https://jinja.palletsprojects.com/templates/) in which every output is a
top-level variable.  Referencing an output the stack does not have is an
error.

Exits non-zero with an ``ERROR:`` line on stderr if the arguments are
invalid, the template does not parse, the stack is not found, or the
template references a missing output.

This replaces ``aws cloudformation describe-stacks`` calls in shell
scripts, avoiding the need for the AWS CLI binary.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from output_render import (
    CfnOutputError,
    ConfigError,
    JsonMode,
    OutputPair,
    ParsedTemplate,
    RenderMode,
    SinkError,
    StackLookupError,
    TabularMode,
    TemplateMode,
    collect_outputs,
    pairs_from_stack,
    parse_template,
    render,
)

# Conventional exit status for a process stopped by SIGINT.
EXIT_INTERRUPTED = 130


@dataclass(frozen=True)
class RunArgs:
    """Everything one invocation needs, as given on the command line."""

    stack_name: str
    template_file: str | None = None
    output_file: str | None = None
    json: bool = False
    region: str | None = None
    profile: str | None = None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def load_template(path: str | Path) -> ParsedTemplate:
    """Read and compile the template file at *path*."""
    try:
        source = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"cannot read template file {path}: {exc}") from exc
    return parse_template(source, name=str(path))


def build_mode(args: RunArgs) -> RenderMode:
    """Validate *args* and pick the render mode.

    Runs before any AWS call, so a bad flag combination or a malformed
    template never touches the network.
    """
    if not args.stack_name:
        raise ConfigError("stack name must be set")
    if args.template_file:
        if args.json:
            raise ConfigError("-j and -t cannot be set at the same time")
        return TemplateMode(load_template(args.template_file))
    if args.json:
        return JsonMode()
    return TabularMode()


def make_client(region: str | None = None, profile: str | None = None) -> Any:
    """Create a CloudFormation client from the default boto3 credential chain."""
    session_kwargs: dict[str, str] = {}
    if region:
        session_kwargs["region_name"] = region
    if profile:
        session_kwargs["profile_name"] = profile
    try:
        return boto3.Session(**session_kwargs).client("cloudformation")
    except BotoCoreError as exc:
        raise ConfigError(f"cannot create CloudFormation client: {exc}") from exc


# ---------------------------------------------------------------------------
# AWS lookup
# ---------------------------------------------------------------------------


def describe_stack_outputs(client: Any, stack_name: str) -> list[OutputPair]:
    """Return the outputs of the one stack matching *stack_name*."""
    try:
        resp = client.describe_stacks(StackName=stack_name)
    except (BotoCoreError, ClientError) as exc:
        raise StackLookupError(f"cannot describe stack '{stack_name}': {exc}") from exc

    stacks = resp.get("Stacks") or []
    if len(stacks) != 1:
        raise StackLookupError(f"got results for {len(stacks)} stacks, want 1")
    return pairs_from_stack(stacks[0])


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def write_output(data: bytes, output_file: str | None = None) -> None:
    """Write *data* to *output_file*, or to stdout when it is not set."""
    try:
        if output_file:
            Path(output_file).write_bytes(data)
        else:
            sys.stdout.buffer.write(data)
            sys.stdout.buffer.flush()
    except OSError as exc:
        target = output_file or "stdout"
        raise SinkError(f"cannot write {target}: {exc}") from exc


def run(args: RunArgs, client: Any = None) -> bytes:
    """Fetch, render and write the stack outputs; return the rendered bytes."""
    mode = build_mode(args)
    if client is None:
        client = make_client(region=args.region, profile=args.profile)
    pairs = describe_stack_outputs(client, args.stack_name)
    data = render(collect_outputs(pairs), mode)
    write_output(data, args.output_file)
    return data


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _parse_args(argv: list[str] | None = None) -> RunArgs:
    parser = argparse.ArgumentParser(
        description="Print CloudFormation stack outputs, optionally through a template.",
    )
    parser.add_argument("-s", "--stack", default="", help="CloudFormation stack name or ARN")
    parser.add_argument(
        "-t",
        "--template",
        default=None,
        help="(optional) Jinja2 template file; every output is a variable",
    )
    parser.add_argument("-o", "--output", default=None, help="(optional) output file (default: stdout)")
    parser.add_argument(
        "-j",
        "--json",
        action="store_true",
        help="output result as JSON (only works if -t is not set)",
    )
    parser.add_argument("--region", default=None, help="AWS region (falls back to environment)")
    parser.add_argument("--profile", default=None, help="AWS named profile (falls back to environment)")
    args = parser.parse_args(argv)
    return RunArgs(
        stack_name=args.stack,
        template_file=args.template,
        output_file=args.output,
        json=args.json,
        region=args.region,
        profile=args.profile,
    )


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        run(args)
    except CfnOutputError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("ERROR: interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    return 0


if __name__ == "__main__":
    sys.exit(main())
