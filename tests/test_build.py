from dataclasses import dataclass, field
from pathlib import Path

import pytest

from binsmith.build import BuildRequest, run_build
from binsmith.errors import BuildScriptFailed, ProductMissing
from binsmith.platforms import Platform
from binsmith.products import ExecutableProduct, LibraryProduct
from binsmith.workspace import Workspace, create_workspace

LINUX64 = Platform("x86_64", "linux", "glibc")


@dataclass(slots=True)
class RecordingAuditor:
    calls: list[tuple[Path, str, tuple[Path, ...]]] = field(default_factory=list)

    def audit(self, prefix: Path, platform: Platform, ignore_manifests) -> None:
        self.calls.append((prefix, platform.triplet, tuple(ignore_manifests)))


def _workspace(tmp_path: Path) -> Workspace:
    return create_workspace(tmp_path / "build", [], [], LINUX64, None)


def _request(workspace: Workspace, *products) -> BuildRequest:
    return BuildRequest(
        name="libfoo",
        products=products or (LibraryProduct(("libfoo",), "libfoo"),),
        script="make install",
        platform=LINUX64,
        workspace=workspace,
    )


def test_successful_build_runs_auditor_and_finds_products(
    tmp_path: Path,
    scripted_executor,
) -> None:
    workspace = _workspace(tmp_path)
    auditor = RecordingAuditor()
    ignored = (workspace.prefix / "manifests" / "libbar.list",)

    run_build(scripted_executor, _request(workspace), auditor=auditor, ignore_manifests=ignored)

    assert auditor.calls == [(workspace.prefix, LINUX64.triplet, ignored)]
    triplet, options = scripted_executor.executed[0]
    assert triplet == LINUX64.triplet
    assert options.verbose is False
    assert options.log_path == workspace.logs_dir / "libfoo.log"


def test_verbose_build_streams_instead_of_logging(tmp_path: Path, scripted_executor) -> None:
    workspace = _workspace(tmp_path)

    run_build(scripted_executor, _request(workspace), verbose=True)

    _, options = scripted_executor.executed[0]
    assert options.verbose is True
    assert options.log_path is None


def test_failed_build_raises_without_debug_shell(tmp_path: Path, scripted_executor) -> None:
    workspace = _workspace(tmp_path)
    workspace.logs_dir.mkdir(parents=True)
    (workspace.logs_dir / "libfoo.log").write_text("checking for gcc... no\n", encoding="utf-8")
    scripted_executor.action = lambda ws, platform: 2

    with pytest.raises(BuildScriptFailed) as excinfo:
        run_build(scripted_executor, _request(workspace), debug=False)

    assert excinfo.value.exit_code == 2
    assert excinfo.value.context["log_tail"] == "checking for gcc... no"
    assert scripted_executor.shells == []


def test_failure_log_outlives_destroyed_workspace(tmp_path: Path, scripted_executor) -> None:
    workspace = _workspace(tmp_path)

    def fail(ws: Workspace, platform: Platform) -> int:
        ws.logs_dir.mkdir(parents=True, exist_ok=True)
        (ws.logs_dir / "libfoo.log").write_text("configure: error\n", encoding="utf-8")
        return 1

    scripted_executor.action = fail

    with pytest.raises(BuildScriptFailed) as excinfo:
        run_build(scripted_executor, _request(workspace))
    workspace.destroy()

    log = Path(excinfo.value.context["log"])
    assert log == tmp_path / "build" / "logs" / LINUX64.triplet / "libfoo.log"
    assert log.read_text(encoding="utf-8") == "configure: error\n"


def test_failed_build_with_debug_enters_shell_then_fails(tmp_path: Path, scripted_executor) -> None:
    workspace = _workspace(tmp_path)
    scripted_executor.action = lambda ws, platform: 1

    with pytest.raises(BuildScriptFailed):
        run_build(scripted_executor, _request(workspace), debug=True)

    assert scripted_executor.shells == [LINUX64.triplet]


def test_missing_products_after_success(tmp_path: Path, scripted_executor) -> None:
    workspace = _workspace(tmp_path)
    request = _request(
        workspace,
        LibraryProduct(("libfoo",), "libfoo"),
        ExecutableProduct("fooify", "fooify"),
    )

    with pytest.raises(ProductMissing) as excinfo:
        run_build(scripted_executor, request)

    assert excinfo.value.context["missing"] == "ExecutableProduct('fooify', 'fooify')"
