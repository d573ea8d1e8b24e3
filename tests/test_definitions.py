from pathlib import Path

import pytest

import phpbuild
from phpbuild.buildsystem import register_core_commands
from phpbuild.definitions import DefinitionRegistry, Step, parse_definition, version_key
from phpbuild.errors import DefinitionError, DefinitionNotFound
from phpbuild.plugins import CommandRegistry, PluginLoader

SHARE = Path(phpbuild.__file__).parent / "share" / "php-build"


def test_version_sort_is_numeric() -> None:
    names = ["5.10.0", "5.3.29", "5.2.17", "5.3.3", "7.0.0RC1", "7.0.0"]
    assert sorted(names, key=version_key) == ["5.2.17", "5.3.3", "5.3.29", "5.10.0", "7.0.0", "7.0.0RC1"]


def test_list_returns_sorted_names(tmp_path: Path) -> None:
    for name in ("5.10.0", "5.3.29", "5.3.3", ".hidden"):
        (tmp_path / name).write_text("[]\n", encoding="utf-8")
    (tmp_path / "subdir").mkdir()

    assert DefinitionRegistry(tmp_path).list() == ["5.3.3", "5.3.29", "5.10.0"]


def test_list_missing_directory_is_empty(tmp_path: Path) -> None:
    assert DefinitionRegistry(tmp_path / "missing").list() == []


def test_resolve_builtin_and_existing_path(tmp_path: Path) -> None:
    builtin = tmp_path / "defs"
    builtin.mkdir()
    (builtin / "5.6.16").write_text("[]\n", encoding="utf-8")
    custom = tmp_path / "my-def"
    custom.write_text("[]\n", encoding="utf-8")
    registry = DefinitionRegistry(builtin)

    assert registry.resolve("5.6.16") == builtin / "5.6.16"
    assert registry.resolve(str(custom)) == custom


def test_resolve_unknown_raises_with_127(tmp_path: Path) -> None:
    with pytest.raises(DefinitionNotFound) as excinfo:
        DefinitionRegistry(tmp_path).resolve("4.0.0")
    assert excinfo.value.exit_status == 127


def test_parse_keeps_scalars_as_strings(tmp_path: Path) -> None:
    path = tmp_path / "def"
    path.write_text(
        "- configure_option: --with-foo=/usr\n"
        "- install_xdebug: 2.10\n"
        "- patch_file: [a.patch, b.patch]\n"
        "- enable_builtin_opcache\n"
        "- with_apxs2:\n",
        encoding="utf-8",
    )

    definition = parse_definition("def", path)

    assert definition.steps == [
        Step("configure_option", ("--with-foo=/usr",)),
        Step("install_xdebug", ("2.10",)),
        Step("patch_file", ("a.patch", "b.patch")),
        Step("enable_builtin_opcache"),
        Step("with_apxs2"),
    ]


@pytest.mark.parametrize(
    "body",
    [
        "configure_option: x\n",
        "- {a: 1, b: 2}\n",
        "- configure_option: {x: y}\n",
        "- [unclosed\n",
    ],
)
def test_malformed_definitions_raise(tmp_path: Path, body: str) -> None:
    path = tmp_path / "bad"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(DefinitionError):
        parse_definition("bad", path)


def test_builtin_definitions_only_use_known_commands() -> None:
    registry = CommandRegistry()
    register_core_commands(registry)
    PluginLoader(registry).load_all(SHARE / "plugins.d")
    definitions = DefinitionRegistry(SHARE / "definitions")

    names = definitions.list()
    assert names[0] == "5.2.17" and names[-1] == "7.0.0"
    for name in names:
        for step in definitions.load(name).steps:
            assert step.command in registry, (name, step.command)
