import dataclasses

import privexec


def as_root_for_someone_else(ctx):
    ident = dataclasses.replace(ctx.identity, euid=0, uid=1000)
    return dataclasses.replace(ctx, identity=ident)


def as_plain_user(ctx):
    ident = dataclasses.replace(ctx.identity, euid=1000, uid=1000)
    return dataclasses.replace(ctx, identity=ident)


def test_run_as_target_is_direct_when_we_are_the_target(ctx):
    ctx = as_plain_user(ctx)
    assert privexec.as_target_argv(ctx, ["git", "--version"]) == ["git", "--version"]


def test_run_as_target_uses_sudo_when_root_acts_for_another_user(ctx):
    ctx = as_root_for_someone_else(ctx)
    assert privexec.as_target_argv(ctx, ["git", "--version"]) == [
        "sudo",
        "-u",
        "tester",
        "-H",
        "git",
        "--version",
    ]


def test_extra_environment_survives_sudo(ctx):
    ctx = as_root_for_someone_else(ctx)
    argv = privexec.as_target_argv(ctx, ["sh", "install.sh"], env_ext={"RUNZSH": "no"})
    assert argv[4:] == ["env", "RUNZSH=no", "sh", "install.sh"]


def test_target_environment_has_target_home(ctx, target_home):
    env = privexec.mk_env_for_target(ctx)
    assert env["HOME"] == str(target_home)
    assert env["USER"] == "tester"
    assert env["LOGNAME"] == "tester"


def test_privileged_commands_get_sudo_only_when_unprivileged(ctx):
    assert privexec.privileged_argv(as_plain_user(ctx), ["chsh"]) == ["sudo", "chsh"]
    assert privexec.privileged_argv(as_root_for_someone_else(ctx), ["chsh"]) == ["chsh"]


def test_exit_status_is_propagated(ctx, machine):
    machine.apt_broken = True
    cp = privexec.run_privileged(ctx, ["apt-get", "install", "-y", "zsh"])
    assert cp.returncode == 100
