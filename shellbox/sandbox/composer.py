"""Composition of the shell script that runs inside the sandbox.

The composer builds an ordered plan of typed stages and renders it to
text only at the boundary:

    prelude -> install -> mount -> stage user script
            -> privilege transition -> user exec -> unmount -> exit

Mount and install failures never abort the script (``set +e``), the
unmount stage always runs after the user script, and the user script's
exit code becomes the script's exit code. When privileges are dropped,
root performs every privileged step itself and the unprivileged
identity is given nothing but ownership of its own script and the
workspace.

Composition is a pure function of the request and the fixed policy
values, so composing the same request twice yields identical text.
"""

import base64
import hashlib
import logging
import shlex
from dataclasses import dataclass, field
from enum import StrEnum

from shellbox.sandbox.models import ExecutionRequest, PrivilegeMode
from shellbox.sandbox.mounts import MountPlanner
from shellbox.sandbox.policies import (
    ScriptLayout,
    UnprivilegedIdentity,
    identity_from_settings,
    layout_from_settings,
)

logger = logging.getLogger(__name__)

INTERPRETER = "/bin/bash"
HEREDOC_PREFIX = "SHELLBOX_USER_SCRIPT_"


class StageKind(StrEnum):
    """Kinds of stages in a composed script, in execution order."""

    PRELUDE = "prelude"
    INSTALL = "install"
    MOUNT = "mount"
    STAGE_USER_SCRIPT = "stage_user_script"
    PRIVILEGE_TRANSITION = "privilege_transition"
    USER_EXEC = "user_exec"
    UNMOUNT = "unmount"
    EXIT = "exit"


@dataclass(frozen=True)
class ScriptStage:
    """One typed section of the composed script."""

    kind: StageKind
    lines: tuple[str, ...]

    def render(self) -> str:
        return "\n".join((f"# --- {self.kind.value} ---", *self.lines))


@dataclass(frozen=True)
class ComposedScript:
    """The generated script, its stage plan and its transport encoding."""

    stages: tuple[ScriptStage, ...]
    text: str = field(repr=False)

    @property
    def kinds(self) -> list[StageKind]:
        return [stage.kind for stage in self.stages]

    @property
    def encoded(self) -> str:
        """Base64 form, safe to embed in a single-quoted shell word."""
        return base64.b64encode(self.text.encode("utf-8")).decode("ascii")

    @staticmethod
    def decode(encoded: str) -> str:
        return base64.b64decode(encoded.encode("ascii")).decode("utf-8")


def strip_interpreter_directive(script: str) -> str:
    """Remove one leading ``#!`` line and trim surrounding whitespace.

    Only the first directive is removed; any directive-like lines after
    it are kept as ordinary script text.
    """
    text = script.lstrip()
    if text.startswith("#!"):
        _, _, text = text.partition("\n")
    return text.strip()


def heredoc_delimiter(body: str) -> str:
    """Derive a here-document delimiter that cannot occur in ``body``.

    Lines are split on ``\\n`` only, which is how bash reads a
    here-document.
    """
    digest = hashlib.sha256(body.encode("utf-8")).hexdigest()[:16]
    delimiter = f"{HEREDOC_PREFIX}{digest}"
    lines = set(body.split("\n"))
    while delimiter in lines:
        delimiter += "_"
    return delimiter


class ScriptComposer:
    """Builds the in-sandbox script and the container bootstrap command.

    Usage:
        composer = ScriptComposer()
        composed = composer.compose(request)
        command = composer.bootstrap_command(composed)
        # ["bash", "-c", "...echo '<base64>' | base64 -d > ... && exec bash ..."]
    """

    def __init__(
        self,
        identity: UnprivilegedIdentity | None = None,
        layout: ScriptLayout | None = None,
        planner: MountPlanner | None = None,
    ) -> None:
        self.identity = identity or identity_from_settings()
        self.layout = layout or layout_from_settings()
        self.planner = planner or MountPlanner()

    def plan(self, request: ExecutionRequest) -> list[ScriptStage]:
        """Build the ordered stage plan for ``request``."""
        stages = [ScriptStage(StageKind.PRELUDE, ("set +e",))]

        mount_plan = self.planner.plan(request.mount) if request.mount else None
        if mount_plan is not None:
            mount_point = shlex.quote(mount_plan.mount_point)
            stages.append(
                ScriptStage(StageKind.INSTALL, tuple(mount_plan.install_fragment.splitlines()))
            )
            stages.append(
                ScriptStage(
                    StageKind.MOUNT,
                    (
                        f"mkdir -p {mount_point} 2>/dev/null"
                        f" || echo {shlex.quote(f'[Warning] Could not create mount point {mount_plan.mount_point}')} >&2",
                        f"if {mount_plan.mount_fragment}; then",
                        "  :",
                        "else",
                        "  MOUNT_EXIT=$?",
                        '  echo "[Error] Mount failed with exit code: $MOUNT_EXIT" >&2',
                        "fi",
                    ),
                )
            )

        stages.append(self._stage_user_script(request.script))

        if request.privilege_mode == PrivilegeMode.DROP_PRIVILEGES:
            stages.append(self._privilege_transition())

        stages.append(self._user_exec(request.privilege_mode))

        if mount_plan is not None:
            stages.append(ScriptStage(StageKind.UNMOUNT, (mount_plan.unmount_fragment,)))

        stages.append(ScriptStage(StageKind.EXIT, ('exit "$USER_EXIT"',)))
        return stages

    def render(self, stages: list[ScriptStage]) -> str:
        body = "\n\n".join(stage.render() for stage in stages)
        return f"#!{INTERPRETER}\n{body}\n"

    def compose(self, request: ExecutionRequest) -> ComposedScript:
        """Compose the full script for ``request``."""
        stages = self.plan(request)
        text = self.render(stages)
        logger.debug(
            "Composed script: %d stages, %d bytes, privilege_mode=%s",
            len(stages),
            len(text),
            request.privilege_mode.value,
        )
        return ComposedScript(stages=tuple(stages), text=text)

    def bootstrap_command(self, composed: ComposedScript) -> list[str]:
        """Container command that prepares the identity and runs ``composed``.

        Runs as root: allocates the unprivileged user, prepares the
        workspace, decodes the base64 payload and hands over to it.
        """
        ident = self.identity
        name = shlex.quote(ident.name)
        workspace = shlex.quote(self.layout.workspace_dir)
        staging = shlex.quote(self.layout.staging_dir)
        target = shlex.quote(self.layout.composed_script_path)
        fallback = " ".join(str(uid) for uid in ident.fallback_uids)

        lines = [
            "set +e",
            f"if ! id -u {name} >/dev/null 2>&1; then",
            f"  groupadd -g {ident.gid} {name} 2>/dev/null || true",
            f"  if ! useradd -u {ident.uid} -g {ident.gid} -m -s {INTERPRETER} {name} 2>/dev/null; then",
            f"    for uid in {fallback}; do",
            f'      if useradd -u "$uid" -g {ident.gid} -m -s {INTERPRETER} {name} 2>/dev/null; then',
            "        break",
            "      fi",
            "    done",
            "  fi",
            f"  id -u {name} >/dev/null 2>&1"
            f" || echo {shlex.quote(f'[Error] Could not create unprivileged user {ident.name}')} >&2",
            "fi",
            f"mkdir -p {workspace} {staging}",
            f"chown {name}:{ident.gid} {workspace} 2>/dev/null || true",
            f"echo '{composed.encoded}' | base64 -d > {target}",
            f"chmod 0700 {target}",
            f"exec bash {target}",
        ]
        return ["bash", "-c", "\n".join(lines)]

    def _stage_user_script(self, script: str) -> ScriptStage:
        body = strip_interpreter_directive(script)
        delimiter = heredoc_delimiter(body)
        path = shlex.quote(self.layout.user_script_path)
        lines = [
            f"mkdir -p {shlex.quote(self.layout.staging_dir)}",
            f"cat > {path} <<'{delimiter}'",
            *body.split("\n"),
            delimiter,
        ]
        return ScriptStage(StageKind.STAGE_USER_SCRIPT, tuple(lines))

    def _privilege_transition(self) -> ScriptStage:
        path = shlex.quote(self.layout.user_script_path)
        return ScriptStage(
            StageKind.PRIVILEGE_TRANSITION,
            (
                f"chown {shlex.quote(self.identity.name)}:{self.identity.gid} {path}",
                f"chmod 0500 {path}",
            ),
        )

    def _user_exec(self, mode: PrivilegeMode) -> ScriptStage:
        workspace = shlex.quote(self.layout.workspace_dir)
        run = f"cd {workspace} && bash {shlex.quote(self.layout.user_script_path)}"
        if mode == PrivilegeMode.DROP_PRIVILEGES:
            line = f"su -l -s {INTERPRETER} -c {shlex.quote(run)} {shlex.quote(self.identity.name)}"
        else:
            line = f"( {run} )"
        return ScriptStage(StageKind.USER_EXEC, (line, "USER_EXIT=$?"))


__all__ = [
    "ComposedScript",
    "ScriptComposer",
    "ScriptStage",
    "StageKind",
    "heredoc_delimiter",
    "strip_interpreter_directive",
]
