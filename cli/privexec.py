import os
import shlex
import subprocess
from typing import Sequence

import click

from context import ProvisioningContext

type RunSpec = Sequence[str | os.PathLike[str]]


def shellize(cmd: RunSpec) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def mk_env_for_target(ctx: ProvisioningContext, env_ext=None) -> dict[str, str]:
    ident = ctx.identity
    env = os.environ.copy()
    # Tools like git, conda and the Oh My Zsh installer read home-relative
    # config, so they must see the target's home rather than ours.
    env["HOME"] = str(ident.home)
    env["USER"] = ident.user
    env["LOGNAME"] = ident.user
    env["PATH"] = ctx.search_path or env.get("PATH", os.defpath)
    if env_ext is not None:
        env = {**env, **env_ext}
    return env


def common_helper_for_run(ctx: ProvisioningContext, cmd: RunSpec):
    if ctx.show_cmds:
        click.echo(f": {shellize(cmd)}")


def as_target_argv(ctx: ProvisioningContext, argv: RunSpec, env_ext=None) -> list[str]:
    ident = ctx.identity
    argv = [str(x) for x in argv]
    if ident.is_self:
        return argv

    # sudo resets the environment, so anything extra is passed through `env`.
    prefix = ["sudo", "-u", ident.user, "-H"]
    if env_ext:
        prefix += ["env", *(f"{k}={v}" for k, v in env_ext.items())]
    return [*prefix, *argv]


def run_as_target(
    ctx: ProvisioningContext,
    argv: RunSpec,
    check=False,
    env_ext=None,
    **kwargs,
) -> subprocess.CompletedProcess:
    """Runs `argv` as the target user, with the target's HOME.

    Direct execution when we already are the target; `sudo -u USER -H`
    when we are root acting on someone else's behalf.
    """
    full = as_target_argv(ctx, argv, env_ext)
    common_helper_for_run(ctx, full)
    return ctx.runner(full, check=check, env=mk_env_for_target(ctx, env_ext), **kwargs)


def privileged_argv(ctx: ProvisioningContext, argv: RunSpec) -> list[str]:
    argv = [str(x) for x in argv]
    if ctx.identity.is_root:
        return argv
    return ["sudo", *argv]


def run_privileged(
    ctx: ProvisioningContext,
    argv: RunSpec,
    check=False,
    **kwargs,
) -> subprocess.CompletedProcess:
    full = privileged_argv(ctx, argv)
    common_helper_for_run(ctx, full)
    env = os.environ.copy()
    # Keep apt from stopping to ask questions.
    env["DEBIAN_FRONTEND"] = "noninteractive"
    return ctx.runner(full, check=check, env=env, **kwargs)


def run_plain(
    ctx: ProvisioningContext, argv: RunSpec, check=False, **kwargs
) -> subprocess.CompletedProcess:
    """For read-only queries that need neither elevation nor a different user."""
    argv = [str(x) for x in argv]
    common_helper_for_run(ctx, argv)
    return ctx.runner(argv, check=check, env=mk_env_for_target(ctx), **kwargs)
