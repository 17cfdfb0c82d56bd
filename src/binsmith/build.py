"""Run one platform's build script and check its declared products."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from binsmith.backends.base import Auditor, ExecOptions, NoAudit, SandboxExecutor
from binsmith.errors import BuildScriptFailed, ProductMissing
from binsmith.observability import StructuredLogger
from binsmith.platforms import Platform
from binsmith.products import Product, missing_products
from binsmith.workspace import Workspace

LOG_TAIL_LINES = 40


@dataclass(frozen=True, slots=True)
class BuildRequest:
    name: str
    products: tuple[Product, ...]
    script: str
    platform: Platform
    workspace: Workspace


def run_build(
    executor: SandboxExecutor,
    request: BuildRequest,
    *,
    verbose: bool = False,
    debug: bool = False,
    ignore_manifests: Sequence[Path] = (),
    auditor: Auditor | None = None,
    logger: StructuredLogger | None = None,
) -> None:
    """Execute ``request.script`` in the sandbox.

    Raises ``BuildScriptFailed`` on a non-zero exit (after an interactive
    shell when ``debug`` is set) and ``ProductMissing`` when the script
    succeeded but did not produce everything the recipe declares.
    """
    log = logger or StructuredLogger()
    triplet = request.platform.triplet
    workspace = request.workspace
    log_path = None if verbose else workspace.logs_dir / f"{request.name}.log"

    log.log(operation="build", platform=triplet, phase="build", message="Running build script.")
    exit_code = executor.execute(
        request.script,
        workspace,
        request.platform,
        ExecOptions(verbose=verbose, log_path=log_path),
    )

    if exit_code != 0:
        context = {"operation": "build", "platform": triplet, "workspace": str(workspace.root)}
        if log_path is not None:
            context["log"] = str(log_path)
            context["log_tail"] = _tail(log_path)
        log.log(
            operation="build",
            platform=triplet,
            phase="build",
            level="error",
            message=f"Build script exited with code {exit_code}.",
        )
        if debug:
            log.log(
                operation="debug_shell",
                platform=triplet,
                phase="build",
                message="Build failed, launching debug shell.",
            )
            executor.enter_interactive_shell(workspace, request.platform)
        raise BuildScriptFailed(
            exit_code,
            hint="Re-run with --debug to inspect the failed build interactively.",
            context=context,
        )

    (auditor or NoAudit()).audit(workspace.prefix, request.platform, tuple(ignore_manifests))

    missing = missing_products(request.products, workspace.prefix, request.platform)
    if missing:
        raise ProductMissing(
            "Build finished but some declared products were not found.",
            hint="Check that the build script installs into $prefix.",
            context={
                "operation": "build",
                "platform": triplet,
                "missing": ", ".join(product.render() for product in missing),
            },
        )
    log.log(operation="build", platform=triplet, phase="build", message="Build succeeded.")


def _tail(path: Path, lines: int = LOG_TAIL_LINES) -> str:
    if not path.is_file():
        return ""
    content = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return "\n".join(content[-lines:])


__all__ = ["BuildRequest", "run_build"]
