from dataclasses import dataclass, field
from pathlib import Path
import textwrap

import constants
from context import ProvisioningContext
import dependencies
import homefiles


@dataclass
class ZshrcFeatures:
    """Which optional integrations actually exist on this machine.

    The rendered .zshrc only mentions what is listed here, so it never
    sources a missing file or aliases a missing command.
    """

    ls_tool: str | None = None
    simplerich: bool = False
    # Plugin name -> entry point script, in the order they must be sourced.
    plugins: dict[str, Path] = field(default_factory=dict)


def detect_features(ctx: ProvisioningContext) -> ZshrcFeatures:
    plugins = {}
    for plugin in constants.ZSH_PLUGINS:
        script = dependencies.plugin_script(ctx, plugin)
        if script is not None:
            plugins[plugin] = script
    return ZshrcFeatures(
        ls_tool=dependencies.ls_icons_tool(ctx),
        simplerich=dependencies.has_simplerich(ctx),
        plugins=plugins,
    )


LS_ALIASES = {
    "eza": textwrap.dedent("""\
        # ==== ls with icons (eza) ====
        alias ls='eza --icons=auto'
        alias ll='eza -al --icons=auto --group-directories-first'
        alias la='eza -a --icons=auto'
        alias lt='eza -T --icons=auto'
        """),
    "exa": textwrap.dedent("""\
        # ==== ls with icons (exa) ====
        alias ls='exa --icons'
        alias ll='exa -al --icons --group-directories-first'
        alias la='exa -a --icons'
        alias lt='exa -T --icons'
        """),
}


def home_relative(ctx: ProvisioningContext, p: Path) -> str:
    try:
        return "$HOME/" + p.relative_to(ctx.home).as_posix()
    except ValueError:
        return p.as_posix()


def render_zshrc(ctx: ProvisioningContext, features: ZshrcFeatures) -> str:
    theme = "simplerich" if features.simplerich else constants.DEFAULT_ZSH_THEME
    parts = [
        textwrap.dedent(f"""\
            # ==== Oh My Zsh ====
            export ZSH="$HOME/{constants.OH_MY_ZSH_DIR_NAME}"
            ZSH_THEME="{theme}"
            plugins=(git)
            """)
    ]

    if features.simplerich:
        # zsh-git-prompt has to be loaded before oh-my-zsh.sh reads the theme.
        parts.append(
            textwrap.dedent("""\
                # Simplerich theme requires zsh-git-prompt BEFORE oh-my-zsh
                if [[ -r "$ZSH/custom/themes/simplerich-zsh-theme/zsh-git-prompt/zshrc.sh" ]]; then
                  source "$ZSH/custom/themes/simplerich-zsh-theme/zsh-git-prompt/zshrc.sh"
                fi
                """)
        )

    parts.append('source "$ZSH/oh-my-zsh.sh"\n')

    if features.ls_tool is not None:
        parts.append(LS_ALIASES[features.ls_tool])

    if features.plugins:
        lines = ["# ==== ZSH Plugins ====", "export ZSH_AUTOSUGGEST_USE_ASYNC=0"]
        # Order matters: syntax highlighting must be sourced last.
        for plugin, script in features.plugins.items():
            lines.append(f"# {plugin}")
            lines.append(f'source "{home_relative(ctx, script)}"')
        parts.append("\n".join(lines) + "\n")

    return "\n".join(parts)


def write_zshrc(ctx: ProvisioningContext, features: ZshrcFeatures | None = None) -> Path | None:
    """Backs up any existing ~/.zshrc, then atomically installs a freshly rendered one.

    Returns the backup path, if there was a file to back up.
    """
    if features is None:
        features = detect_features(ctx)
    content = render_zshrc(ctx, features)
    backup = homefiles.backup_existing(ctx, ctx.zshrc_path)
    homefiles.install_file_atomically(ctx, ctx.zshrc_path, content, constants.CONFIG_FILE_MODE)
    return backup
