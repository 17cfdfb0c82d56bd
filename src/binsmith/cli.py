"""Command-line entry point for recipe scripts.

A recipe script declares a ``Recipe`` and ends with::

    if __name__ == "__main__":
        build_tarballs(sys.argv[1:], recipe)
"""

from __future__ import annotations

import argparse
import re
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TextIO

from binsmith.backends.base import Auditor, SandboxExecutor
from binsmith.backends.local import LocalSandbox
from binsmith.config import (
    BuildConfig,
    DiscoveryInputs,
    ReleaseTarget,
    RunOptions,
    discover_release_target,
)
from binsmith.errors import PartitionArgumentError
from binsmith.models import Recipe
from binsmith.observability import StructuredLogger
from binsmith.orchestrator import Orchestrator, RunResult
from binsmith.platforms import parse_triplet
from binsmith.release import ReleaseHost
from binsmith.shards import LoopbackMounter, ShardMounter

HELP = """\
Usage: build_tarballs.py [target1,target2,...] [--help]
                         [--verbose] [--debug] [--only-manifest]
                         [--part=n/m]

Options:
    targets             By default `build_tarballs.py` builds the targets
                        listed in the recipe, but a specific (comma-separated)
                        set of targets to build can be passed instead.

    --verbose           Print out the full build log for each target and
                        status messages while building.

    --debug             Drop into an interactive shell inside the sandbox if
                        a build fails.

    --only-manifest     Do not build anything, only reconstruct the manifest
                        document from the assets of the current release.
                        `--only-buildjl` is accepted as an alias.

    --part=n/m          Build only the n-th of m equal slices of the target
                        list. No manifest document is written.

    --help              Print out this message.
"""

_PART = re.compile(r"^(?P<part>\d+)/(?P<parts>\d+)$")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="build_tarballs.py", add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument(
        "--only-manifest",
        "--only-buildjl",
        dest="only_manifest",
        action="store_true",
    )
    parser.add_argument("--part", action="append", default=[])
    parser.add_argument("targets", nargs="?")
    return parser


def parse_part(text: str) -> tuple[int, int]:
    match = _PART.match(text.strip())
    if match is None:
        raise PartitionArgumentError(
            f"Malformed --part value {text!r}.",
            hint="Use --part=n/m, for example --part=2/3.",
            context={"operation": "parse_args", "value": text},
        )
    part, parts = int(match["part"]), int(match["parts"])
    if parts < 1 or not 1 <= part <= parts:
        raise PartitionArgumentError(
            f"Invalid partition {part}/{parts}.",
            hint="Use --part=n/m with 1 <= n <= m.",
            context={"operation": "parse_args", "value": text},
        )
    return part, parts


def parse_args(argv: Sequence[str]) -> tuple[RunOptions, bool]:
    """Return the run options and whether ``--help`` was requested."""
    args = _parser().parse_args(list(argv))
    if len(args.part) > 1:
        raise PartitionArgumentError(
            "Multiple --part flags given; only one is allowed.",
            context={"operation": "parse_args", "values": ", ".join(args.part)},
        )
    part = parse_part(args.part[0]) if args.part else None
    platforms = None
    if args.targets:
        platforms = tuple(parse_triplet(t) for t in args.targets.split(",") if t.strip())
    options = RunOptions(
        verbose=args.verbose,
        debug=args.debug,
        only_manifest=args.only_manifest,
        part=part,
        platforms=platforms or None,
    )
    return options, args.help


def build_tarballs(
    argv: Sequence[str],
    recipe: Recipe,
    *,
    root: str | Path = ".",
    target: ReleaseTarget | None = None,
    executor: SandboxExecutor | None = None,
    mounter: ShardMounter | None = None,
    auditor: Auditor | None = None,
    release_host: ReleaseHost | None = None,
    stream: TextIO | None = None,
) -> RunResult | None:
    """Build ``recipe`` as directed by command-line ``argv``; None when only help was shown."""
    out = stream or sys.stdout
    options, show_help = parse_args(argv)
    if show_help:
        out.write(HELP)
        return None

    config = BuildConfig.from_root(root)
    release = target or discover_release_target(DiscoveryInputs(cwd=config.root_dir))
    orchestrator = Orchestrator(
        recipe,
        config,
        release,
        executor=executor or LocalSandbox(),
        mounter=mounter
        or LoopbackMounter(
            image_dir=config.downloads_dir / "shards",
            mount_root=config.build_dir / "mounts",
        ),
        auditor=auditor,
        release_host=release_host,
        logger=StructuredLogger(echo=out if options.verbose else None),
        stream=out,
    )
    return orchestrator.run(options)


__all__ = ["HELP", "build_tarballs", "parse_args", "parse_part"]
