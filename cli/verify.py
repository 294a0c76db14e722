from dataclasses import dataclass
from pathlib import Path
import re

import click
from packaging.version import InvalidVersion, Version

import constants
from context import ProvisioningContext
import identity
from outcomes import ProvisioningRecord
import dependencies
import privexec

VERSION_RE = re.compile(r"\d+(?:\.\d+)+")


@dataclass
class Check:
    label: str
    ok: bool
    detail: str
    record_key: str | None = None


def parse_version(output: str) -> str | None:
    """Pulls the first dotted version number out of a tool's --version output."""
    m = VERSION_RE.search(output)
    if m is None:
        return None
    try:
        return str(Version(m.group(0)))
    except InvalidVersion:
        return m.group(0)


def tool_version(ctx: ProvisioningContext, exe: str) -> str | None:
    try:
        cp = privexec.run_plain(ctx, [exe, "--version"], capture_output=True, text=True)
    except OSError:
        return None
    if cp.returncode != 0:
        return None
    return parse_version(cp.stdout or cp.stderr or "")


def check_tool(ctx: ProvisioningContext, label: str, exe: str | None, key: str) -> Check:
    if exe is None:
        return Check(label, False, "Not found", key)
    version = tool_version(ctx, exe)
    return Check(label, True, version or "present (version unknown)", key)


def configured_theme(ctx: ProvisioningContext) -> str | None:
    try:
        text = ctx.zshrc_path.read_text(encoding="utf-8")
    except OSError:
        return None
    for line in text.splitlines():
        if line.startswith("ZSH_THEME="):
            return line.removeprefix("ZSH_THEME=").strip('"')
    return None


def collect_checks(ctx: ProvisioningContext) -> list[Check]:
    conda = ctx.conda_dir / "bin" / "conda"
    conda_exe = str(conda) if conda.is_file() else ctx.which("conda")
    ls_tool = dependencies.ls_icons_tool(ctx)
    theme = configured_theme(ctx)
    zsh = ctx.which("zsh")
    login_shell = identity.current_login_shell(ctx.identity)

    checks = [
        check_tool(ctx, "Zsh", zsh, "base-packages"),
        Check(
            "Oh My Zsh",
            dependencies.has_oh_my_zsh(ctx),
            "Installed" if dependencies.has_oh_my_zsh(ctx) else "Not found",
            "oh-my-zsh",
        ),
        check_tool(ctx, "Conda", conda_exe, "miniconda"),
        check_tool(ctx, ls_tool or "eza", ctx.which(ls_tool) if ls_tool else None, "eza"),
        Check("Theme", theme is not None, f"ZSH_THEME={theme}" if theme else "Not set"),
        Check(
            "Simplerich",
            dependencies.has_simplerich(ctx),
            "Installed" if dependencies.has_simplerich(ctx) else "Not found",
            "simplerich-theme",
        ),
    ]
    for plugin in constants.ZSH_PLUGINS:
        script = dependencies.plugin_script(ctx, plugin)
        detail = str(script) if script else "Not found"
        checks.append(Check(plugin, script is not None, detail, plugin))
    checks.append(
        Check(
            "Login shell",
            Path(login_shell).name == "zsh",
            login_shell,
        )
    )
    return checks


def do_verify(ctx: ProvisioningContext) -> list[Check]:
    """Reports what is installed. Reads only; safe to run at any time."""
    record = ProvisioningRecord(ctx)
    checks = collect_checks(ctx)

    click.echo("Verifying installation...")
    for check in checks:
        mark = click.style("✓", fg="green") if check.ok else click.style("✗", fg="red")
        line = f"  {mark} {check.label}: {check.detail}"
        outcome = record.query(check.record_key) if check.record_key else None
        if outcome is not None:
            line += f" [last run: {outcome.describe()}]"
        click.echo(line)
    return checks
