import sys
from pathlib import Path

import click

import verify
import workflow
from context import ProvisioningContext
from errors import ProvisioningError
from outcomes import InstallOutcome
from provisioning import sez


def mk_context(bin_dir: Path | None, machine: str | None) -> ProvisioningContext:
    try:
        return ProvisioningContext.create(bin_dir=bin_dir, machine=machine)
    except ProvisioningError as e:
        sez(click.style(str(e), fg="red"), err=True)
        sys.exit(1)


@click.group()
def cli():
    pass


@cli.command()
@click.option(
    "--bin-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where downloaded release binaries are installed (default: /usr/local/bin).",
)
@click.option(
    "--machine",
    default=None,
    help="Override the detected processor architecture (as `uname -m` reports it).",
)
def provision(bin_dir: Path | None, machine: str | None):
    """Install and configure zsh, Oh My Zsh, conda and friends for the invoking user."""
    ctx = mk_context(bin_dir, machine)
    outcomes: list[InstallOutcome] = []
    try:
        workflow.provision_workstation(ctx, outcomes)
    except ProvisioningError as e:
        sez(click.style(f"FATAL: {e}", fg="red"), err=True)
        if outcomes:
            click.echo("Progress before the failure:", err=True)
            workflow.print_summary(outcomes)
        sys.exit(1)


@cli.command(name="verify")
def verify_cmd():
    """Report what is installed, without changing anything."""
    verify.do_verify(mk_context(None, None))


if __name__ == "__main__":
    cli()
