"""Safe writes into the target user's home directory.

Everything written here ends up owned by the target identity, even when
provisioning runs as root on the target's behalf, and replaces its
predecessor atomically: readers see either the old file or the new one.
"""

from pathlib import Path
import os
import shutil
import tempfile
import time

from context import ProvisioningContext
import privexec


def backup_path_for(path: Path, now: int | None = None) -> Path:
    stamp = int(time.time()) if now is None else now
    candidate = path.with_name(f"{path.name}.backup.{stamp}")
    n = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.backup.{stamp}.{n}")
        n += 1
    return candidate


def backup_existing(ctx: ProvisioningContext, path: Path, now: int | None = None) -> Path | None:
    """Copies `path` aside, returning where it went (None if there was nothing to copy)."""
    if not path.is_file():
        return None
    dest = backup_path_for(path, now)
    shutil.copy2(path, dest)
    if ctx.identity.is_root:
        st = path.stat()
        os.chown(dest, st.st_uid, st.st_gid)
    return dest


def ensure_target_dir(ctx: ProvisioningContext, path: Path) -> None:
    if path.is_dir():
        return
    if ctx.identity.is_self:
        path.mkdir(parents=True, exist_ok=True)
        return
    privexec.run_as_target(ctx, ["mkdir", "-p", path], check=True)


def install_file_atomically(
    ctx: ProvisioningContext,
    path: Path,
    content: str,
    mode: int,
) -> None:
    ident = ctx.identity
    fd, tmpname = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    tmp = Path(tmpname)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp.chmod(mode)

        if ident.is_root:
            os.chown(tmp, ident.uid, ident.gid)
        elif not ident.is_self:
            privexec.run_privileged(
                ctx,
                ["install", "-m", f"{mode:04o}", "-o", ident.user, "-g", ident.group, tmp, path],
                check=True,
            )
            return

        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)
