"""Run build scripts with the host's bash.

``LocalSandbox`` provides no isolation of its own. Pass a ``wrapper`` argv
(for example ``["unshare", "--map-auto", "--map-current-user", "--"]`` or a
``chroot`` into the mounted shard) to confine the script.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from binsmith.backends.base import ExecOptions
from binsmith.errors import BackendExecutionError
from binsmith.platforms import Platform

if TYPE_CHECKING:
    from binsmith.workspace import Workspace


@dataclass(slots=True)
class LocalSandbox:
    name: str = "local"
    wrapper: list[str] = field(default_factory=list)
    shell: str = "bash"
    extra_env: dict[str, str] = field(default_factory=dict)

    def build_env(self, workspace: Workspace, platform: Platform) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.extra_env)
        env.update(
            {
                "prefix": str(workspace.prefix),
                "target": platform.triplet,
                "WORKSPACE": str(workspace.root),
                "srcdir": str(workspace.srcdir),
                "nproc": str(os.cpu_count() or 1),
                "SANDBOX_ROOT": str(workspace.shard.mount_path) if workspace.shard else "",
            }
        )
        return env

    def execute(
        self,
        script: str,
        workspace: Workspace,
        platform: Platform,
        options: ExecOptions,
    ) -> int:
        self._ensure_prerequisites()
        cmd = [*self.wrapper, self.shell, "-e", "-c", script]
        env = self.build_env(workspace, platform)
        if options.verbose or options.log_path is None:
            result = subprocess.run(cmd, cwd=workspace.srcdir, env=env, check=False)
            return result.returncode

        options.log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(options.log_path, "w", encoding="utf-8") as log:
            result = subprocess.run(
                cmd,
                cwd=workspace.srcdir,
                env=env,
                stdout=log,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        return result.returncode

    def enter_interactive_shell(self, workspace: Workspace, platform: Platform) -> None:
        self._ensure_prerequisites()
        subprocess.run(
            [*self.wrapper, self.shell],
            cwd=workspace.srcdir,
            env=self.build_env(workspace, platform),
            check=False,
        )

    def _ensure_prerequisites(self) -> None:
        if shutil.which(self.shell) is None:
            raise BackendExecutionError(
                f"Local sandbox requires `{self.shell}` in PATH.",
                hint="Install bash or configure LocalSandbox.shell.",
                context={"backend": self.name, "operation": "execute"},
            )
        if self.wrapper and shutil.which(self.wrapper[0]) is None:
            raise BackendExecutionError(
                f"Sandbox wrapper `{self.wrapper[0]}` is not in PATH.",
                context={"backend": self.name, "operation": "execute"},
            )


__all__ = ["LocalSandbox"]
