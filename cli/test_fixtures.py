"""
Shared pytest fixtures, loaded by tests/conftest.py as a plugin.

The `ctx` fixture is a ProvisioningContext for a scratch user whose home
lives under the test's `tmp_path`. Its runner is a `FakeMachine`, which
imitates apt, git, the installer scripts, conda and chsh well enough for
presence checks to see their effects, so no test touches the real system
or the network. Tests steer failures through the machine's attributes,
e.g. `machine.apt_broken = True` or `machine.missing_commands.add("git")`.
"""

from pathlib import Path
import io
import os
import subprocess
import tarfile
import tempfile

import pytest

import constants
import identity
import provisioning
from context import ProvisioningContext
from errors import MethodFailed, TransientNetwork
from identity import TargetIdentity


def make_executable(path: Path, body: str = "#!/bin/sh\nexit 0\n") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
    path.chmod(0o755)
    return path


def tarball_with(members: dict[str, tuple[bytes, int]]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, (data, mode) in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def strip_elevation(argv: list[str]) -> list[str]:
    if argv[:2] == ["sudo", "-u"]:
        argv = argv[4:]  # sudo -u USER -H
        if argv and argv[0] == "env":
            argv = argv[1:]
            while argv and "=" in argv[0]:
                argv = argv[1:]
        return argv
    if argv[:1] == ["sudo"]:
        return argv[1:]
    return argv


class FakeMachine:
    """A pretend Debian box, just detailed enough for the provisioning steps."""

    # Which file each apt package drops, relative to the fake system bin dir,
    # or (for absolute paths) relative to the fake sysroot.
    APT_FILES = {
        "nano": "nano",
        "zsh": "zsh",
        "git": "git",
        "curl": "curl",
        "wget": "wget",
        "ca-certificates": "/etc/ssl/certs/ca-certificates.crt",
        "tar": "tar",
        "bc": "bc",
        "eza": "eza",
        "exa": "exa",
    }

    def __init__(self, root: Path, home: Path):
        self.root = root
        self.home = home
        self.sysbin = root / "usr" / "bin"
        self.sysroot = root / "sysroot"
        self.share = root / "usr" / "share"
        for d in (self.sysbin, self.sysroot, self.share):
            d.mkdir(parents=True, exist_ok=True)

        self.calls: list[list[str]] = []
        self.apt_available: set[str] = set(constants.BASE_PACKAGES)
        self.apt_broken = False
        self.clone_failures: set[str] = set()
        self.download_failures: set[str] = set()
        self.downloads: list[str] = []
        self.download_limits: dict[str, float | None] = {}
        # Commands that are simply not installed: running them raises FileNotFoundError.
        self.missing_commands: set[str] = set()
        self.login_shell = "/bin/bash"
        self.eza_archive = tarball_with({"./eza": (b"#!/bin/sh\necho eza v0.20.0\n", 0o755)})

    # -- command execution -------------------------------------------------

    def __call__(self, argv, check=False, env=None, capture_output=False, text=False, **kwargs):
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        command = strip_elevation(argv)
        if Path(command[0]).name in self.missing_commands:
            raise FileNotFoundError(2, "No such file or directory", command[0])
        rc, out = self.dispatch(command, env or {})
        if check and rc != 0:
            raise subprocess.CalledProcessError(rc, argv)
        if not text:
            out = out.encode("utf-8")
        return subprocess.CompletedProcess(argv, rc, stdout=out, stderr=out[:0])

    def dispatch(self, argv: list[str], env: dict[str, str]) -> tuple[int, str]:
        match argv:
            case ["apt-get", "update"]:
                return 0, ""
            case ["apt-get", "install", "-y", *packages]:
                return self.apt_install(packages), ""
            case ["apt-cache", "show", package]:
                return (0 if package in self.apt_available else 100), ""
            case ["git", "clone", *args]:
                return self.git_clone(args[-2], Path(args[-1])), ""
            case ["bash", _script, "-b", "-p", prefix]:
                make_executable(Path(prefix) / "bin" / "conda")
                return 0, ""
            case ["sh", _script, "--unattended"]:
                omz = Path(env.get("HOME", self.home)) / constants.OH_MY_ZSH_DIR_NAME
                self.populate_oh_my_zsh(omz)
                return 0, ""
            case ["mkdir", "-p", path]:
                Path(path).mkdir(parents=True, exist_ok=True)
                return 0, ""
            case ["chsh", "-s", shell, _user]:
                self.login_shell = shell
                return 0, ""
            case [exe, "--version"]:
                name = Path(exe).name
                return 0, f"{name} 5.9 (x86_64-pc-linux-gnu)\n"
            case [exe, *_] if Path(exe).name == "conda":
                return 0, ""
        raise AssertionError(f"FakeMachine does not know how to run {argv}")

    def apt_install(self, packages: list[str]) -> int:
        if self.apt_broken or any(p not in self.apt_available for p in packages):
            return 100
        for p in packages:
            if p in constants.ZSH_PLUGINS:
                plugin = self.share / p / f"{p}.zsh"
                plugin.parent.mkdir(parents=True, exist_ok=True)
                plugin.write_text("# plugin\n", encoding="utf-8")
                continue
            target = self.APT_FILES[p]
            if target.startswith("/"):
                f = self.sysroot / target.lstrip("/")
                f.parent.mkdir(parents=True, exist_ok=True)
                f.write_text("certs\n", encoding="utf-8")
            else:
                make_executable(self.sysbin / target)
        return 0

    def git_clone(self, url: str, dest: Path) -> int:
        if url in self.clone_failures:
            return 128
        dest.mkdir(parents=True)
        if url == constants.SIMPLERICH_REPO:
            (dest / constants.SIMPLERICH_THEME_FILE).write_text("# theme\n", encoding="utf-8")
            (dest / "zsh-git-prompt").mkdir()
            (dest / "zsh-git-prompt" / "zshrc.sh").write_text("# prompt\n", encoding="utf-8")
        elif url == constants.OH_MY_ZSH_REPO:
            self.populate_oh_my_zsh(dest)
        else:
            name = url.rsplit("/", 1)[-1]
            (dest / f"{name}.zsh").write_text("# plugin\n", encoding="utf-8")
        return 0

    def populate_oh_my_zsh(self, omz: Path):
        (omz / "themes").mkdir(parents=True, exist_ok=True)
        (omz / "custom" / "plugins").mkdir(parents=True, exist_ok=True)
        (omz / "oh-my-zsh.sh").write_text("# omz\n", encoding="utf-8")

    # -- downloads ---------------------------------------------------------

    def download(self, ctx: ProvisioningContext, url: str, filename: Path, max_time=None) -> None:
        self.downloads.append(url)
        self.download_limits[url] = max_time
        if url in self.download_failures:
            raise TransientNetwork(f"Failed to download {url}: connection reset")
        if "eza" in url:
            filename.write_bytes(self.eza_archive)
        elif url.endswith(".sh"):
            filename.write_text("#!/bin/sh\n", encoding="utf-8")
        else:
            raise MethodFailed(f"Failed to download {url}: 404")


@pytest.fixture
def test_tmp_dir(tmp_path) -> Path:
    """A temporary directory created for the currently executing test"""
    return tmp_path


@pytest.fixture
def target_home(test_tmp_dir) -> Path:
    home = test_tmp_dir / "home" / "tester"
    home.mkdir(parents=True)
    return home


@pytest.fixture
def target_identity(target_home) -> TargetIdentity:
    """Ourselves, but living in a scratch home directory."""
    return TargetIdentity(
        user="tester",
        uid=os.getuid(),
        gid=os.getgid(),
        group="testers",
        home=target_home,
        login_shell="/bin/bash",
        euid=os.geteuid(),
    )


@pytest.fixture
def machine(test_tmp_dir, target_home, monkeypatch) -> FakeMachine:
    m = FakeMachine(test_tmp_dir / "machine", target_home)
    monkeypatch.setattr(provisioning, "download", m.download)
    monkeypatch.setattr(identity, "current_login_shell", lambda ident: m.login_shell)
    return m


@pytest.fixture
def staging_root(test_tmp_dir, monkeypatch) -> Path:
    """Where tempfile puts staging directories during the test."""
    root = test_tmp_dir / "staging"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def ctx(test_tmp_dir, target_identity, machine, staging_root) -> ProvisioningContext:
    bin_dir = test_tmp_dir / "local-bin"
    bin_dir.mkdir()
    return ProvisioningContext(
        identity=target_identity,
        machine="x86_64",
        bin_dir=bin_dir,
        search_path=os.pathsep.join([str(bin_dir), str(machine.sysbin)]),
        distro_plugin_root=machine.share,
        runner=machine,
        sysroot=machine.sysroot,
    )
