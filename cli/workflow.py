import os

import click

import constants
import dependencies
import identity
import privexec
import zshrc
from context import ProvisioningContext
from errors import FatalPrerequisite, ProvisioningError
from outcomes import InstallOutcome, OutcomeState, ProvisioningRecord
from provisioning import banner, sez, want, warn


def init_conda(ctx: ProvisioningContext) -> bool:
    def say(msg: str):
        sez(msg, ctx="(conda) ")

    conda = ctx.conda_dir / "bin" / "conda"
    if not conda.is_file():
        say(f"No conda at {conda}; skipping initialization.")
        return False

    # Every step here is best-effort; a half-initialized conda is still usable.
    steps = [
        ["init", "bash"],
        ["init", "zsh"],
        *(["config", "--set", k, v] for k, v in constants.CONDA_SETTINGS.items()),
    ]
    for args in steps:
        try:
            cp = privexec.run_as_target(ctx, [conda, *args], capture_output=True)
        except OSError as e:
            warn(f"`conda {' '.join(args)}` could not be run: {e}", ctx="(conda) ")
            continue
        if cp.returncode != 0:
            warn(f"`conda {' '.join(args)}` exited with status {cp.returncode}", ctx="(conda) ")
    return True


def set_default_shell(ctx: ProvisioningContext) -> None:
    zsh = ctx.which("zsh")
    if zsh is None:
        raise FatalPrerequisite("zsh", "no zsh executable found on PATH")

    ident = ctx.identity
    # /bin/zsh and /usr/bin/zsh are the same file on merged-/usr systems.
    if os.path.realpath(identity.current_login_shell(ident)) == os.path.realpath(zsh):
        sez(f"Login shell of {ident.user} is already {zsh}.", ctx="(chsh) ")
        return

    try:
        cp = privexec.run_privileged(ctx, ["chsh", "-s", zsh, ident.user])
    except OSError as e:
        raise ProvisioningError(f"Could not run chsh for {ident.user}: {e}") from e
    if cp.returncode != 0:
        raise ProvisioningError(f"chsh exited with status {cp.returncode} for {ident.user}")
    sez(f"Login shell of {ident.user} set to {zsh}.", ctx="(chsh) ")


def print_summary(outcomes: list[InstallOutcome]) -> None:
    for o in outcomes:
        line = f"  {o.name}: {o.describe()}"
        if o.state == OutcomeState.SKIPPED:
            line = click.style(line, fg="yellow")
        click.echo(line)


def provision_workstation(
    ctx: ProvisioningContext,
    outcomes: list[InstallOutcome] | None = None,
) -> list[InstallOutcome]:
    """The whole provisioning run, top to bottom.

    Outcomes are appended to `outcomes` as they happen, so a caller that
    catches a fatal error can still report how far we got.
    """
    if outcomes is None:
        outcomes = []
    ident = ctx.identity

    banner("Starting system initialization")
    click.echo(f"User: {ident.user}")
    click.echo(f"Home: {ident.home}")

    record = ProvisioningRecord(ctx)
    for dep in dependencies.catalog():
        banner(dep.name)
        outcomes.append(want(ctx, dep, record))

    banner("Configuring .zshrc")
    backup = zshrc.write_zshrc(ctx)
    if backup is not None:
        sez(f"Previous .zshrc saved as {backup}", ctx="(zshrc) ")
    sez(f"Wrote {ctx.zshrc_path}", ctx="(zshrc) ")

    banner("Initializing conda")
    init_conda(ctx)

    banner("Setting zsh as default shell")
    set_default_shell(ctx)

    banner("Setup complete")
    print_summary(outcomes)
    click.echo("")
    click.echo("Next steps:")
    click.echo("  1. Restart shell: exec zsh")
    click.echo("  2. Verify: homestead verify")
    click.echo("")
    click.echo("Note: Icons require a Nerd Font in your terminal.")
    return outcomes
