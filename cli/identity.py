from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import grp
import os
import pwd

from errors import ProvisioningError


@dataclass(frozen=True)
class TargetIdentity:
    """The account that provisioning acts on and that owns what we write.

    `euid` is the effective uid of the provisioning process itself, which
    differs from `uid` when we were launched via sudo on someone's behalf.
    """

    user: str
    uid: int
    gid: int
    group: str
    home: Path
    login_shell: str
    euid: int

    @property
    def is_root(self) -> bool:
        return self.euid == 0

    @property
    def is_self(self) -> bool:
        return self.euid == self.uid


def resolve_target_identity(
    environ: Mapping[str, str] | None = None,
    euid: int | None = None,
) -> TargetIdentity:
    if environ is None:
        environ = os.environ
    if euid is None:
        euid = os.geteuid()

    sudo_user = environ.get("SUDO_USER", "")
    if euid == 0 and sudo_user and sudo_user != "root":
        entry = pwd.getpwnam(sudo_user)
    else:
        entry = pwd.getpwuid(euid)

    # The passwd database is authoritative; $HOME may still point at the
    # invoker's home under some sudo configurations.
    home = Path(entry.pw_dir)
    if not home.is_dir():
        raise ProvisioningError(f"Home directory {home} of user {entry.pw_name} does not exist.")
    if euid != 0 and not os.access(home, os.W_OK):
        raise ProvisioningError(f"Home directory {home} of user {entry.pw_name} is not writable.")

    return TargetIdentity(
        user=entry.pw_name,
        uid=entry.pw_uid,
        gid=entry.pw_gid,
        group=grp.getgrgid(entry.pw_gid).gr_name,
        home=home,
        login_shell=entry.pw_shell,
        euid=euid,
    )


def current_login_shell(identity: TargetIdentity) -> str:
    """Re-reads the passwd database, since chsh may have changed it since startup."""
    return pwd.getpwnam(identity.user).pw_shell
