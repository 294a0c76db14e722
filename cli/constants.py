from pathlib import Path

# Base packages, each with a probe used to decide whether apt needs to run.
# A probe is either a command name (looked up on PATH) or an absolute path.
BASE_PACKAGES: dict[str, str] = {
    "nano": "nano",
    "zsh": "zsh",
    "git": "git",
    "curl": "curl",
    "wget": "wget",
    "ca-certificates": "/etc/ssl/certs/ca-certificates.crt",
    "tar": "tar",
    "bc": "bc",
}

# Note: the keys are `uname -m` spellings, not normalized machine names;
# anything absent here means "no release asset for this machine".
EZA_RELEASE_ASSETS = {
    "x86_64": "eza_x86_64-unknown-linux-gnu.tar.gz",
    "amd64": "eza_x86_64-unknown-linux-gnu.tar.gz",
    "aarch64": "eza_aarch64-unknown-linux-gnu.tar.gz",
    "arm64": "eza_aarch64-unknown-linux-gnu.tar.gz",
    "armv7l": "eza_arm-unknown-linux-gnueabihf.tar.gz",
    "armv7": "eza_arm-unknown-linux-gnueabihf.tar.gz",
    "armhf": "eza_arm-unknown-linux-gnueabihf.tar.gz",
}
EZA_RELEASE_URL = "https://github.com/eza-community/eza/releases/latest/download/{asset}"

MINICONDA_INSTALLERS = {
    "x86_64": "Miniconda3-latest-Linux-x86_64.sh",
    "amd64": "Miniconda3-latest-Linux-x86_64.sh",
    "aarch64": "Miniconda3-latest-Linux-aarch64.sh",
    "arm64": "Miniconda3-latest-Linux-aarch64.sh",
}
MINICONDA_URL = "https://repo.anaconda.com/miniconda/{asset}"

OH_MY_ZSH_INSTALLER_URL = "https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh"
OH_MY_ZSH_REPO = "https://github.com/ohmyzsh/ohmyzsh.git"

SIMPLERICH_REPO = "https://github.com/parroteffect/zsh-theme"
SIMPLERICH_THEME_FILE = "simplerich.zsh-theme"
DEFAULT_ZSH_THEME = "robbyrussell"

ZSH_PLUGINS = {
    "zsh-autosuggestions": "https://github.com/zsh-users/zsh-autosuggestions",
    "zsh-syntax-highlighting": "https://github.com/zsh-users/zsh-syntax-highlighting",
}
# Where Debian/Ubuntu's packaged plugins put their entry points.
DISTRO_PLUGIN_ROOT = Path("/usr/share")

# Bounded retry for every network fetch.
DOWNLOAD_RETRIES = 8
DOWNLOAD_RETRY_BACKOFF_S = 2.0
DOWNLOAD_CONNECT_TIMEOUT_S = 10
DOWNLOAD_READ_TIMEOUT_S = 30
# Upper bound on a release-asset transfer, however healthy the connection
# looks. Installer scripts (Miniconda is ~150 MB) are not bounded this way.
DOWNLOAD_MAX_TIME_S = 120

INSTALLED_BINARY_MODE = 0o755
CONFIG_FILE_MODE = 0o644

DEFAULT_BIN_DIR = Path("/usr/local/bin")

# Relative to the target's home directory.
CONDA_DIR_NAME = "miniconda3"
OH_MY_ZSH_DIR_NAME = ".oh-my-zsh"
RECORD_RELPATH = Path(".local", "state", "homestead", "record.json")

CONDA_SETTINGS = {
    "auto_activate_base": "true",
    "changeps1": "false",
}
