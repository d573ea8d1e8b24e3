import io
import os
import signal
from pathlib import Path

import pytest
from rich.console import Console

from phpbuild.buildsystem import BuildPipeline, Stage, comment_extension_dir
from phpbuild.fetcher import Transport

from conftest import FakeBackend, RecordingRunner, make_tarball

URL = "https://example.test/php-7.0.0.tar.gz"

PHP_INI = """\
[PHP]
engine = On
extension_dir = "./"
"""


def _write_definition(settings, name: str, body: str) -> None:
    (settings.definitions_dir / name).write_text(body, encoding="utf-8")


def _pipeline(settings, tmp_path: Path, runner: RecordingRunner, *, name: str = "7.0.0", backend=None):
    backend = backend or FakeBackend(
        {URL: make_tarball("php-7.0.0", {"configure": "#!/bin/sh\n", "php.ini-development": PHP_INI})}
    )
    console = Console(file=io.StringIO(), width=300, color_system=None)
    pipeline = BuildPipeline(
        name,
        tmp_path / "prefix",
        config=settings,
        runner=runner,
        transport=Transport(backend),
        console=console,
        system="Linux",
        lib64_dir=tmp_path / "no-lib64",
    )
    return pipeline, console


def _patches(tmp_path: Path):
    first = tmp_path / "first.patch"
    second = tmp_path / "second.patch"
    first.write_text("--- a\n+++ a\n", encoding="utf-8")
    second.write_text("--- b\n+++ b\n", encoding="utf-8")
    return first, second


def test_successful_build_runs_every_stage_in_order(settings, tmp_path: Path) -> None:
    first, second = _patches(tmp_path)
    _write_definition(
        settings,
        "7.0.0",
        f"- configure_option: --with-foo=bar\n"
        f"- patch_file: {first}\n"
        f"- patch_file: {second}\n"
        f"- install_package: {URL}\n",
    )
    runner = RecordingRunner()
    pipeline, _ = _pipeline(settings, tmp_path, runner)

    assert pipeline.run() == 0

    assert pipeline.history == list(Stage)
    argvs = runner.argvs()
    configure = next(a for a in argvs if a[0] == "./configure")
    prefix = tmp_path / "prefix"
    assert configure[1:6] == [
        f"--prefix={prefix}",
        f"--exec-prefix={prefix}",
        f"--with-config-file-path={prefix / 'etc'}",
        f"--with-config-file-scan-dir={prefix / 'etc' / 'conf.d'}",
        f"--libexecdir={prefix / 'libexec'}",
    ]
    assert configure[-1] == "--with-foo=bar"
    assert ["./buildconf", "--force"] not in argvs
    assert ["make"] in argvs
    assert argvs.index(["make"]) < argvs.index(["make", "install"]) < argvs.index(["make", "clean"])

    ini = (prefix / "etc" / "php.ini").read_text(encoding="utf-8")
    assert ';extension_dir = "./"' in ini
    assert (prefix / "etc" / "conf.d").is_dir()


def test_patches_apply_in_registration_order_and_failure_is_not_fatal(settings, tmp_path: Path) -> None:
    first, second = _patches(tmp_path)
    _write_definition(
        settings,
        "7.0.0",
        f"- patch_file: {first}\n- patch_file: {second}\n- install_package: {URL}\n",
    )
    runner = RecordingRunner({f"patch -p0 -N -i {first}": 1})
    pipeline, _ = _pipeline(settings, tmp_path, runner)

    assert pipeline.run() == 0

    patch_calls = [a for a in runner.argvs() if a[0] == "patch" and a[-1] in (str(first), str(second))]
    assert [a[-1] for a in patch_calls] == [str(first), str(second)]
    assert pipeline.patch_result["ok"] is False
    assert pipeline.patch_result["applied"] == [str(second)]
    assert pipeline.patch_result["errors"][0]["patch"] == str(first)
    assert Stage.DONE in pipeline.history


def test_compile_failure_cleans_up_and_returns_compiler_status(settings, tmp_path: Path) -> None:
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    runner = RecordingRunner({"make": 2})
    pipeline, console = _pipeline(settings, tmp_path, runner)

    assert pipeline.run() == 2

    assert pipeline.history[-1] == Stage.COMPILE
    assert runner.argvs()[-1] == ["make", "clean"]
    assert ["make", "install"] not in runner.argvs()
    out = console.file.getvalue()
    assert "BUILD ERROR" in out
    assert str(pipeline.log.path) in out
    assert pipeline.log.path.exists()


def test_keyboard_interrupt_takes_cleanup_path(settings, tmp_path: Path) -> None:
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    runner = RecordingRunner({"make": KeyboardInterrupt()})
    pipeline, console = _pipeline(settings, tmp_path, runner)

    assert pipeline.run() == 128 + signal.SIGINT

    assert runner.argvs()[-1] == ["make", "clean"]
    assert "BUILD ERROR" in console.file.getvalue()


def test_sigterm_handler_is_restored_after_run(settings, tmp_path: Path) -> None:
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    before = signal.getsignal(signal.SIGTERM)
    pipeline, _ = _pipeline(settings, tmp_path, RecordingRunner())

    pipeline.run()

    assert signal.getsignal(signal.SIGTERM) == before


def test_sigterm_during_compile_cleans_up(settings, tmp_path: Path) -> None:
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")

    def terminate() -> int:
        os.kill(os.getpid(), signal.SIGTERM)
        return 0

    runner = RecordingRunner({"make": terminate})
    pipeline, console = _pipeline(settings, tmp_path, runner)

    assert pipeline.run() == 128 + signal.SIGTERM

    argvs = runner.argvs()
    assert argvs[-1] == ["make", "clean"]
    assert argvs.index(["make"]) < argvs.index(["make", "clean"])
    assert ["make", "install"] not in argvs
    assert Stage.DONE not in pipeline.history
    assert "BUILD ERROR" in console.file.getvalue()


def test_sigterm_during_extension_install_is_not_swallowed(settings, tmp_path: Path) -> None:
    plugins = settings.share_dir / "plugins.d"
    plugins.mkdir()
    (plugins / "interrupting.py").write_text(
        "from phpbuild.errors import BuildInterrupted\n"
        "\n"
        "\n"
        "def install_extension(build, name, version):\n"
        "    raise BuildInterrupted(15)\n"
        "\n"
        "\n"
        "def register(registry):\n"
        "    registry.register('install_extension', install_extension)\n",
        encoding="utf-8",
    )
    settings.merged["build"]["install_extensions"] = "xdebug=2.9.0"
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    runner = RecordingRunner()
    pipeline, _ = _pipeline(settings, tmp_path, runner)

    assert pipeline.run() == 128 + signal.SIGTERM

    assert runner.argvs()[-1] == ["make", "clean"]
    assert pipeline.history[-1] == Stage.INSTALL_EXTENSIONS
    assert Stage.DONE not in pipeline.history


def test_unknown_definition_returns_127_without_log(settings, tmp_path: Path) -> None:
    runner = RecordingRunner()
    pipeline, console = _pipeline(settings, tmp_path, runner, name="9.9.9")

    assert pipeline.run() == 127

    assert runner.calls == []
    assert pipeline.log is None
    assert "BUILD ERROR" not in console.file.getvalue()


def test_download_failure_is_fatal_with_status_one(settings, tmp_path: Path) -> None:
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    pipeline, console = _pipeline(settings, tmp_path, RecordingRunner(), backend=FakeBackend({}))

    assert pipeline.run() == 1
    assert "BUILD ERROR" in console.file.getvalue()


def test_unknown_command_is_fatal(settings, tmp_path: Path) -> None:
    _write_definition(settings, "7.0.0", "- no_such_command: x\n")
    pipeline, console = _pipeline(settings, tmp_path, RecordingRunner())

    assert pipeline.run() == 1
    assert "no_such_command" in console.file.getvalue()


def test_missing_configure_runs_buildconf_and_lib64_flag(settings, tmp_path: Path) -> None:
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    backend = FakeBackend({URL: make_tarball("php-src", {"buildconf": "", "php.ini-dist": PHP_INI})})
    runner = RecordingRunner()
    pipeline, _ = _pipeline(settings, tmp_path, runner, backend=backend)
    pipeline.lib64_dir = tmp_path
    assert pipeline.run() == 0

    argvs = runner.argvs()
    assert ["./buildconf", "--force"] in argvs
    configure = next(a for a in argvs if a[0] == "./configure")
    assert configure[-1] == "--with-libdir=lib64"
    # php.ini-dist is the last fallback
    assert (tmp_path / "prefix" / "etc" / "php.ini").exists()


def test_zts_and_darwin_flags(settings, tmp_path: Path) -> None:
    settings.merged["build"]["zts"] = True
    settings.merged["build"]["keep_object_files"] = True
    _write_definition(settings, "7.0.0", f"- configure_option: --with-openssl\n- install_package: {URL}\n")
    runner = RecordingRunner()
    pipeline, _ = _pipeline(settings, tmp_path, runner)
    pipeline.system = "Darwin"

    assert pipeline.run() == 0

    tokens = pipeline.config.flag_tokens()
    assert "--with-openssl" not in tokens
    assert "--with-openssl=/usr/local/opt/openssl" in tokens
    assert "--enable-maintainer-zts" in tokens
    assert ["make", "clean"] not in runner.argvs()


def test_triggers_receive_build_environment(settings, tmp_path: Path) -> None:
    after = settings.share_dir / "after-install.d"
    after.mkdir()
    (after / "10-notify").write_text("echo done\n", encoding="utf-8")
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    runner = RecordingRunner()
    pipeline, _ = _pipeline(settings, tmp_path, runner)

    assert pipeline.run() == 0

    idx = runner.argvs().index(["sh", str(after / "10-notify")])
    env = runner.envs[idx]
    assert env["PREFIX"] == str(tmp_path / "prefix")
    assert env["DEFINITION"] == "7.0.0"
    assert env["SOURCE_PATH"] == str(settings.tmp_dir / "source" / "7.0.0")


def test_failing_trigger_stops_build(settings, tmp_path: Path) -> None:
    before = settings.share_dir / "before-install.d"
    before.mkdir()
    hook = before / "check"
    hook.write_text("exit 3\n", encoding="utf-8")
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    runner = RecordingRunner({f"sh {hook}": 3})
    pipeline, _ = _pipeline(settings, tmp_path, runner)

    assert pipeline.run() == 3
    assert pipeline.history[-1] == Stage.BEFORE_INSTALL_HOOK


def test_extension_failures_do_not_fail_build(settings, tmp_path: Path) -> None:
    settings.merged["build"]["install_extensions"] = "redis=5.3.7"
    _write_definition(settings, "7.0.0", f"- install_package: {URL}\n")
    pipeline, _ = _pipeline(settings, tmp_path, RecordingRunner())

    # no extension plugin in this share tree, so the command is unknown
    assert pipeline.run() == 0
    assert pipeline.extension_result["ok"] is False
    assert pipeline.extension_result["errors"][0]["extension"] == "redis=5.3.7"


def test_comment_extension_dir_only_touches_default_line(tmp_path: Path) -> None:
    ini = tmp_path / "php.ini"
    ini.write_text('extension_dir = "./"\nextension_dir = "/opt/ext"\n', encoding="utf-8")

    assert comment_extension_dir(ini) is True
    assert ini.read_text(encoding="utf-8") == ';extension_dir = "./"\nextension_dir = "/opt/ext"\n'
    assert comment_extension_dir(ini) is False


@pytest.mark.parametrize(
    "steps, expected",
    [
        ("- configure_option: [-D, --with-mysql=]\n", ["--with-mysqli=mysqlnd"]),
        ("- remove_configure_option: --with-mysql=\n", ["--with-mysqli=mysqlnd"]),
        (
            "- replace_configure_option: [--with-mysql=, --with-mysql]\n",
            ["--with-mysqli=mysqlnd", "--with-mysql"],
        ),
        ("- configure_option: [-R, --with-mysqli, /usr]\n", ["--with-mysql=mysqlnd", "--with-mysqli=/usr"]),
        ("- configure_option: [--with-pear, /usr/share]\n", ["--with-mysql=mysqlnd", "--with-mysqli=mysqlnd", "--with-pear=/usr/share"]),
    ],
)
def test_configure_option_commands(settings, tmp_path: Path, steps: str, expected) -> None:
    (settings.share_dir / "default_configure_options").write_text(
        "--with-mysql=mysqlnd\n--with-mysqli=mysqlnd  # both drivers\n", encoding="utf-8"
    )
    _write_definition(settings, "flags", steps)
    pipeline, _ = _pipeline(settings, tmp_path, RecordingRunner(), name="flags")

    assert pipeline.run() == 0
    assert pipeline.config.flag_tokens() == expected
