from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable
import os
import platform
import shutil
import subprocess

import requests

import constants
from identity import TargetIdentity, resolve_target_identity

type Runner = Callable[..., subprocess.CompletedProcess]


@dataclass
class ProvisioningContext:
    """Everything the provisioning steps need to know about where they run.

    Built once by `create()` and then threaded through every step, so that
    nothing consults ambient globals like $HOME or the working directory.
    """

    identity: TargetIdentity
    machine: str
    bin_dir: Path = constants.DEFAULT_BIN_DIR
    search_path: str = ""
    distro_plugin_root: Path = constants.DISTRO_PLUGIN_ROOT
    show_cmds: bool = False
    runner: Runner = subprocess.run
    # Where apt would install base packages' files; only consulted for
    # path-style probes in constants.BASE_PACKAGES.
    sysroot: Path = Path("/")
    session: requests.Session | None = field(default=None, repr=False)
    apt_updated: bool = False

    @classmethod
    def create(
        cls,
        bin_dir: Path | None = None,
        machine: str | None = None,
    ) -> "ProvisioningContext":
        bin_dir = bin_dir or constants.DEFAULT_BIN_DIR
        path = os.environ.get("PATH", os.defpath)
        if str(bin_dir) not in path.split(os.pathsep):
            path = os.pathsep.join([path, str(bin_dir)])
        return cls(
            identity=resolve_target_identity(),
            machine=machine or platform.machine(),
            bin_dir=bin_dir,
            search_path=path,
            show_cmds=os.environ.get("HOMESTEAD_SHOW_CMDS", "0") != "0",
        )

    @property
    def home(self) -> Path:
        return self.identity.home

    @property
    def conda_dir(self) -> Path:
        return self.home / constants.CONDA_DIR_NAME

    @property
    def oh_my_zsh_dir(self) -> Path:
        return self.home / constants.OH_MY_ZSH_DIR_NAME

    @property
    def zsh_custom(self) -> Path:
        return self.oh_my_zsh_dir / "custom"

    @property
    def simplerich_dir(self) -> Path:
        return self.zsh_custom / "themes" / "simplerich-zsh-theme"

    @property
    def zshrc_path(self) -> Path:
        return self.home / ".zshrc"

    @property
    def record_path(self) -> Path:
        return self.home / constants.RECORD_RELPATH

    def which(self, name: str) -> str | None:
        return shutil.which(name, path=self.search_path)

    def system_path(self, absolute: str) -> Path:
        return self.sysroot / absolute.lstrip("/")
