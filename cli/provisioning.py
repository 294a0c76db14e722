from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol
import os
import shutil
import stat
import subprocess
import tarfile
import tempfile
import time
from urllib.parse import urlparse

import click
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import constants
from context import ProvisioningContext
from errors import FatalPrerequisite, MethodFailed, TransientNetwork, UnsupportedPlatform
from outcomes import InstallOutcome, OutcomeState, ProvisioningRecord
import homefiles
import privexec


def sez(msg: str, ctx: str = "", err=False):
    click.echo("HOMESTEAD: " + ctx + msg, err=err)


def warn(msg: str, ctx: str = ""):
    sez(click.style(msg, fg="yellow"), ctx, err=True)


def banner(title: str):
    click.echo(click.style(f"\n=== {title} ===", bold=True))


def mk_session() -> requests.Session:
    retry = Retry(
        total=constants.DOWNLOAD_RETRIES,
        connect=constants.DOWNLOAD_RETRIES,
        read=constants.DOWNLOAD_RETRIES,
        status=constants.DOWNLOAD_RETRIES,
        backoff_factor=constants.DOWNLOAD_RETRY_BACKOFF_S,
        backoff_max=constants.DOWNLOAD_RETRY_BACKOFF_S,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def save_body(response: requests.Response, url: str, filename: Path, deadline: float | None):
    # Truncates, so a retried transfer never appends to a partial one.
    with open(filename, "wb") as f:
        for chunk in response.iter_content(chunk_size=1 << 16):
            if deadline is not None and time.monotonic() > deadline:
                raise TransientNetwork(f"Download of {url} took longer than its time limit")
            f.write(chunk)


def download(
    ctx: ProvisioningContext,
    url: str,
    filename: Path,
    max_time: float | None = constants.DOWNLOAD_MAX_TIME_S,
) -> None:
    """Fetches `url` into `filename`, retrying transient failures a bounded number of times.

    The session's adapter retries connecting and retryable statuses; a
    connection that drops while the body is streaming is retried here,
    from scratch, up to DOWNLOAD_RETRIES times. `max_time` bounds the whole
    call (None for no bound; the read timeout still catches stalls).

    Raises TransientNetwork once retries are exhausted or the transfer
    overruns its time budget, and MethodFailed for definitive HTTP errors.
    """
    if ctx.session is None:
        ctx.session = mk_session()

    deadline = None if max_time is None else time.monotonic() + max_time
    for attempt in range(1, constants.DOWNLOAD_RETRIES + 2):
        try:
            response = ctx.session.get(
                url,
                stream=True,
                timeout=(constants.DOWNLOAD_CONNECT_TIMEOUT_S, constants.DOWNLOAD_READ_TIMEOUT_S),
            )
        except requests.RequestException as e:
            raise TransientNetwork(f"Failed to download {url}: {e}") from e

        with response:
            try:
                response.raise_for_status()
            except requests.HTTPError as e:
                raise MethodFailed(f"Failed to download {url}: {e}") from e
            try:
                save_body(response, url, filename, deadline)
                return
            except requests.RequestException as e:
                if attempt > constants.DOWNLOAD_RETRIES:
                    raise TransientNetwork(f"Failed to download {url}: {e}") from e
                warn(f"Transfer of {url} interrupted ({e}); retrying.", ctx="(download) ")

        time.sleep(constants.DOWNLOAD_RETRY_BACKOFF_S)


def find_executable_within(root: Path, name: str, max_depth: int = 3) -> Path | None:
    def is_user_executable(p: Path) -> bool:
        return p.is_file() and bool(p.stat().st_mode & stat.S_IXUSR)

    if is_user_executable(root / name):
        return root / name

    for dirpath, dirnames, filenames in os.walk(root):
        depth = len(Path(dirpath).relative_to(root).parts)
        if depth >= max_depth - 1:
            dirnames.clear()
        if name in filenames and is_user_executable(Path(dirpath, name)):
            return Path(dirpath, name)
    return None


def install_binary(ctx: ProvisioningContext, src: Path, dest: Path) -> None:
    mode = constants.INSTALLED_BINARY_MODE
    if os.access(dest.parent, os.W_OK):
        shutil.copyfile(src, dest)
        dest.chmod(mode)
        return

    cp = privexec.run_privileged(
        ctx, ["install", "-m", f"{mode:04o}", src, dest], capture_output=True
    )
    if cp.returncode != 0:
        raise MethodFailed(f"Could not install {dest.name} into {dest.parent}")


def hand_to_target(ctx: ProvisioningContext, *paths: Path) -> None:
    """Lets the target user read what we staged, when we are root working on their behalf."""
    ident = ctx.identity
    if ident.is_root and not ident.is_self:
        for p in paths:
            os.chown(p, ident.uid, ident.gid)


class InstallMethod(Protocol):
    label: str

    def attempt(self, ctx: ProvisioningContext) -> None:
        """Install the dependency, or raise MethodFailed."""


def apt_update_once(ctx: ProvisioningContext) -> None:
    if ctx.apt_updated:
        return
    sez("Updating package lists...", ctx="(apt) ")
    cp = privexec.run_privileged(ctx, ["apt-get", "update"], capture_output=True)
    if cp.returncode != 0:
        # A stale index can still satisfy most installs; let them try.
        warn("apt-get update failed; continuing with the existing package index.", ctx="(apt) ")
    ctx.apt_updated = True


def apt_knows(ctx: ProvisioningContext, package: str) -> bool:
    cp = privexec.run_plain(ctx, ["apt-cache", "show", package], capture_output=True)
    return cp.returncode == 0


@dataclass
class AptInstall:
    packages: list[str]
    # Check `apt-cache show` first, for packages that only some releases carry.
    only_if_known: bool = False

    @property
    def label(self) -> str:
        return "apt: " + " ".join(self.packages)

    def attempt(self, ctx: ProvisioningContext) -> None:
        if not self.packages:
            return
        apt_update_once(ctx)
        if self.only_if_known:
            unknown = [p for p in self.packages if not apt_knows(ctx, p)]
            if unknown:
                raise MethodFailed(f"apt has no package(s) {' '.join(unknown)}")

        cp = privexec.run_privileged(
            ctx, ["apt-get", "install", "-y", *self.packages], capture_output=True
        )
        if cp.returncode != 0:
            raise MethodFailed(f"apt-get install exited with status {cp.returncode}")


@dataclass
class ReleaseBinaryInstall:
    binary: str
    # Maps `uname -m` to the release asset name; see constants.EZA_RELEASE_ASSETS.
    assets: dict[str, str]
    url_template: str
    max_time: float | None = constants.DOWNLOAD_MAX_TIME_S

    @property
    def label(self) -> str:
        return f"{self.binary} release binary"

    def attempt(self, ctx: ProvisioningContext) -> None:
        def say(msg: str):
            sez(msg, ctx=f"({self.binary}) ")

        asset = self.assets.get(ctx.machine)
        if asset is None:
            raise UnsupportedPlatform(
                f"No {self.binary} release asset for architecture {ctx.machine!r}"
            )

        url = self.url_template.format(asset=asset)
        staging = Path(tempfile.mkdtemp(prefix=f"homestead-{self.binary}-"))
        try:
            archive = staging / asset
            say(f"Downloading {url}...")
            download(ctx, url, archive, max_time=self.max_time)

            unpacked = staging / "unpacked"
            try:
                shutil.unpack_archive(archive, unpacked, filter="tar")
            except (shutil.ReadError, tarfile.TarError, ValueError) as e:
                raise MethodFailed(f"Failed to extract {asset}: {e}") from e

            found = find_executable_within(unpacked, self.binary)
            if found is None:
                raise MethodFailed(f"No executable named {self.binary} inside {asset}")

            dest = ctx.bin_dir / self.binary
            install_binary(ctx, found, dest)
            say(f"Installed {self.binary} to {dest}")
        finally:
            shutil.rmtree(staging, ignore_errors=True)


@dataclass
class GitClone:
    url: str
    dest: Callable[[ProvisioningContext], Path]
    recursive: bool = False
    # Runs after a successful clone, e.g. to copy a theme file into place.
    then: Callable[[ProvisioningContext, Path], None] | None = None

    @property
    def label(self) -> str:
        return f"git clone {self.url}"

    def attempt(self, ctx: ProvisioningContext) -> None:
        dest = self.dest(ctx)
        try:
            homefiles.ensure_target_dir(ctx, dest.parent)
        except subprocess.CalledProcessError as e:
            raise MethodFailed(f"Could not create {dest.parent}: {e}") from e

        argv = ["git", "clone", "--depth=1", "--single-branch"]
        if self.recursive:
            argv.append("--recursive")
        cp = privexec.run_as_target(ctx, [*argv, self.url, dest], capture_output=True)
        if cp.returncode != 0:
            raise MethodFailed(f"git clone exited with status {cp.returncode}")

        if self.then is not None:
            try:
                self.then(ctx, dest)
            except OSError as e:
                raise MethodFailed(str(e)) from e


@dataclass
class InstallerScript:
    """Downloads an installer script and runs it, unattended, as the target user."""

    name: str
    url_for: Callable[[ProvisioningContext], str]
    argv_for: Callable[[ProvisioningContext, Path], list[str | os.PathLike[str]]]
    env_ext: dict[str, str] = field(default_factory=dict)
    # Installers can be large; by default only the read timeout applies.
    max_time: float | None = None

    @property
    def label(self) -> str:
        return f"{self.name} installer script"

    def attempt(self, ctx: ProvisioningContext) -> None:
        url = self.url_for(ctx)
        staging = Path(tempfile.mkdtemp(prefix="homestead-installer-"))
        try:
            script = staging / os.path.basename(urlparse(url).path)
            sez(f"Downloading {url}...", ctx=f"({self.name}) ")
            download(ctx, url, script, max_time=self.max_time)
            script.chmod(0o755)
            hand_to_target(ctx, staging, script)

            cp = privexec.run_as_target(ctx, self.argv_for(ctx, script), env_ext=self.env_ext)
            if cp.returncode != 0:
                raise MethodFailed(f"{self.name} installer exited with status {cp.returncode}")
        finally:
            shutil.rmtree(staging, ignore_errors=True)


@dataclass
class Dependency:
    name: str
    is_present: Callable[[ProvisioningContext], bool]
    methods: list[InstallMethod]
    required: bool = False
    # Always-refreshed dependencies skip the presence check: whatever is in
    # `refresh_paths` is deleted and fetched again on every run.
    always_refresh: bool = False
    refresh_paths: Callable[[ProvisioningContext], list[Path]] | None = None


def remove_path(p: Path) -> None:
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
    else:
        p.unlink(missing_ok=True)


def want(
    ctx: ProvisioningContext,
    dep: Dependency,
    record: ProvisioningRecord | None = None,
) -> InstallOutcome:
    """Make sure `dep` is present, trying its install methods in order.

    Non-final method failures are reported and the next method is tried.
    When every method fails, a required dependency raises FatalPrerequisite;
    an optional one is skipped with a warning.
    """

    def say(msg: str):
        sez(msg, ctx=f"({dep.name}) ")

    def done(outcome: InstallOutcome) -> InstallOutcome:
        if record is not None:
            record.note(outcome)
        return outcome

    if dep.always_refresh:
        say("Always refreshed to pick up upstream changes; removing any previous copy...")
        for p in dep.refresh_paths(ctx) if dep.refresh_paths else []:
            remove_path(p)
    elif dep.is_present(ctx):
        say("Already present, skipping.")
        return done(InstallOutcome(dep.name, OutcomeState.ALREADY_PRESENT))

    failures: list[str] = []
    for index, method in enumerate(dep.methods, start=1):
        say(f"Installing via {method.label} ({index}/{len(dep.methods)})...")
        try:
            method.attempt(ctx)
        except (MethodFailed, OSError) as e:
            # OSError covers a missing apt-get, git or sudo as much as a failed copy.
            failures.append(f"{method.label}: {e}")
            if index < len(dep.methods):
                warn(f"{e}; trying the next method.", ctx=f"({dep.name}) ")
            continue

        say(f"Installed via {method.label}.")
        return done(
            InstallOutcome(
                dep.name,
                OutcomeState.INSTALLED,
                method_index=index,
                method_label=method.label,
            )
        )

    reason = "; ".join(failures) if failures else "no install methods available"
    if dep.required:
        raise FatalPrerequisite(dep.name, reason)

    warn(f"Could not install {dep.name} ({reason}); continuing without it.", ctx=f"({dep.name}) ")
    return done(InstallOutcome(dep.name, OutcomeState.SKIPPED, detail=reason))
