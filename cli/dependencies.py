"""The things a provisioned workstation has, and how each one is obtained.

Presence checks are plain functions of the context so they can be tested
on their own, apart from any installation logic.
"""

from pathlib import Path
import os
import shutil

import constants
from context import ProvisioningContext
from provisioning import (
    AptInstall,
    Dependency,
    GitClone,
    InstallerScript,
    ReleaseBinaryInstall,
)
from errors import UnsupportedPlatform


def missing_base_packages(ctx: ProvisioningContext) -> list[str]:
    missing = []
    for package, probe in constants.BASE_PACKAGES.items():
        if probe.startswith("/"):
            found = ctx.system_path(probe).exists()
        else:
            found = ctx.which(probe) is not None
        if not found:
            missing.append(package)
    return missing


def has_base_packages(ctx: ProvisioningContext) -> bool:
    return not missing_base_packages(ctx)


def ls_icons_tool(ctx: ProvisioningContext) -> str | None:
    """Which of eza/exa is available, preferring eza."""
    for name in ("eza", "exa"):
        if ctx.which(name) is not None:
            return name
    return None


def has_ls_icons_tool(ctx: ProvisioningContext) -> bool:
    return ls_icons_tool(ctx) is not None


def has_miniconda(ctx: ProvisioningContext) -> bool:
    return ctx.conda_dir.is_dir()


def has_oh_my_zsh(ctx: ProvisioningContext) -> bool:
    return ctx.oh_my_zsh_dir.is_dir()


def has_simplerich(ctx: ProvisioningContext) -> bool:
    theme = ctx.oh_my_zsh_dir / "themes" / constants.SIMPLERICH_THEME_FILE
    return ctx.simplerich_dir.is_dir() and theme.is_file()


def distro_plugin_script(ctx: ProvisioningContext, plugin: str) -> Path:
    return ctx.distro_plugin_root / plugin / f"{plugin}.zsh"


def custom_plugin_dir(ctx: ProvisioningContext, plugin: str) -> Path:
    return ctx.zsh_custom / "plugins" / plugin


def plugin_script(ctx: ProvisioningContext, plugin: str) -> Path | None:
    """Where `plugin`'s entry point lives, distro package first."""
    for candidate in (
        distro_plugin_script(ctx, plugin),
        custom_plugin_dir(ctx, plugin) / f"{plugin}.zsh",
    ):
        if candidate.is_file():
            return candidate
    return None


def has_plugin(plugin: str):
    def check(ctx: ProvisioningContext) -> bool:
        return (
            distro_plugin_script(ctx, plugin).is_file() or custom_plugin_dir(ctx, plugin).is_dir()
        )

    return check


def miniconda_url(ctx: ProvisioningContext) -> str:
    asset = constants.MINICONDA_INSTALLERS.get(ctx.machine)
    if asset is None:
        raise UnsupportedPlatform(f"No Miniconda installer for architecture {ctx.machine!r}")
    return constants.MINICONDA_URL.format(asset=asset)


def copy_simplerich_theme(ctx: ProvisioningContext, clone: Path) -> None:
    themes = ctx.oh_my_zsh_dir / "themes"
    themes.mkdir(parents=True, exist_ok=True)
    dest = themes / constants.SIMPLERICH_THEME_FILE
    shutil.copyfile(clone / constants.SIMPLERICH_THEME_FILE, dest)
    if ctx.identity.is_root:
        # Oh My Zsh's own tree belongs to the target user.
        os.chown(dest, ctx.identity.uid, ctx.identity.gid)


def base_packages() -> Dependency:
    # zsh and git are needed by every later step, so this one is required.
    return Dependency(
        name="base-packages",
        is_present=has_base_packages,
        methods=[AptInstall(list(constants.BASE_PACKAGES))],
        required=True,
    )


def ls_icons() -> Dependency:
    return Dependency(
        name="eza",
        is_present=has_ls_icons_tool,
        methods=[
            AptInstall(["eza"]),
            AptInstall(["exa"]),
            ReleaseBinaryInstall(
                binary="eza",
                assets=constants.EZA_RELEASE_ASSETS,
                url_template=constants.EZA_RELEASE_URL,
            ),
        ],
    )


def miniconda() -> Dependency:
    return Dependency(
        name="miniconda",
        is_present=has_miniconda,
        methods=[
            InstallerScript(
                name="miniconda",
                url_for=miniconda_url,
                argv_for=lambda ctx, script: ["bash", script, "-b", "-p", ctx.conda_dir],
            )
        ],
    )


def oh_my_zsh() -> Dependency:
    # The theme, the plugins and .zshrc all live inside this tree.
    return Dependency(
        name="oh-my-zsh",
        is_present=has_oh_my_zsh,
        methods=[
            InstallerScript(
                name="oh-my-zsh",
                url_for=lambda ctx: constants.OH_MY_ZSH_INSTALLER_URL,
                argv_for=lambda ctx, script: ["sh", script, "--unattended"],
                # KEEP_ZSHRC leaves any existing .zshrc for our own backup to capture.
                env_ext={"RUNZSH": "no", "CHSH": "no", "KEEP_ZSHRC": "yes"},
            ),
            GitClone(
                url=constants.OH_MY_ZSH_REPO,
                dest=lambda ctx: ctx.oh_my_zsh_dir,
            ),
        ],
        required=True,
    )


def simplerich_theme() -> Dependency:
    # Deliberately not idempotent: removed and cloned afresh on every run
    # so that upstream theme changes are always picked up.
    return Dependency(
        name="simplerich-theme",
        is_present=has_simplerich,
        methods=[
            GitClone(
                url=constants.SIMPLERICH_REPO,
                dest=lambda ctx: ctx.simplerich_dir,
                recursive=True,
                then=copy_simplerich_theme,
            )
        ],
        always_refresh=True,
        refresh_paths=lambda ctx: [ctx.simplerich_dir],
    )


def zsh_plugin(plugin: str) -> Dependency:
    return Dependency(
        name=plugin,
        is_present=has_plugin(plugin),
        methods=[
            AptInstall([plugin], only_if_known=True),
            GitClone(
                url=constants.ZSH_PLUGINS[plugin],
                dest=lambda ctx: custom_plugin_dir(ctx, plugin),
            ),
        ],
    )


def catalog() -> list[Dependency]:
    """In installation order; later entries may rely on earlier ones."""
    return [
        base_packages(),
        ls_icons(),
        miniconda(),
        oh_my_zsh(),
        simplerich_theme(),
        *(zsh_plugin(p) for p in constants.ZSH_PLUGINS),
    ]
