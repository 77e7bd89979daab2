"""Tests for MessageGenerator."""

import pytest

from savepoint.core.messages import FALLBACK_MESSAGE, MessageGenerator
from savepoint.models import PendingChange


def change(name, kind="modified", code=" M"):
    return PendingChange(status_code=code, file_name=name, kind=kind)


@pytest.fixture
def generator():
    return MessageGenerator()


@pytest.mark.parametrize(
    "files,expected_type",
    [
        (["app.py", "styles.css"], "feat"),
        (["theme.scss", "README.md"], "style"),
        (["README.md", "package.json"], "docs"),
        (["settings.yaml"], "config"),
        (["test_suite"], "test"),
        (["snapshot.spec"], "test"),
        (["LICENSE"], "chore"),
    ],
)
def test_commit_type_priority(generator, files, expected_type):
    message = generator.generate([change(f) for f in files])
    assert message.startswith(f"{expected_type}: ")


def test_single_file_verbs(generator):
    assert generator.generate([change("src/app.py", "added")]) == "feat: add app.py"
    assert generator.generate([change("src/app.py", "deleted")]) == "feat: remove app.py"
    assert generator.generate([change("src/app.py", "renamed")]) == "feat: rename app.py"
    assert generator.generate([change("src/app.py", "modified")]) == "feat: update app.py"
    assert generator.generate([change("notes.txt", "untracked")]) == "docs: add notes.txt"


def test_single_file_add_beats_update(generator):
    assert generator.generate([change("a.py", "added, modified")]) == "feat: add a.py"


def test_multiple_files_dominant_verb(generator):
    files = [change("a.py", "modified"), change("b.py", "deleted")]
    assert generator.generate(files) == "feat: update 2 files"

    files.append(change("c.py", "added"))
    assert generator.generate(files) == "feat: add 3 files"

    assert generator.generate([change("a", "copied"), change("b", "copied")]) == "chore: modify 2 files"


def test_order_insensitive_and_deterministic(generator):
    files = [change("a.py", "added"), change("b.css"), change("docs/c.md", "deleted")]
    first = generator.generate(files, "3 files changed")
    generator.clear_cache()
    second = MessageGenerator().generate(list(reversed(files)), "3 files changed")
    assert first == second == "feat: add 3 files"


def test_malformed_entries_filtered(generator):
    files = [
        None,
        {"file_name": "", "kind": "modified"},
        {"file_name": "main.py"},
        {"fileName": "style.css", "type": "modified"},
    ]
    assert generator.generate(files) == "style: update style.css"


@pytest.mark.parametrize("files", [[], None, [{"kind": "added"}]])
def test_empty_input_falls_back(generator, files):
    assert generator.generate(files, "") == FALLBACK_MESSAGE


def test_cache_is_bounded_and_clearable():
    generator = MessageGenerator(max_size=3)
    for i in range(5):
        generator.generate([change(f"file{i}.py")])

    assert generator.cache_stats() == {"size": 3, "max_size": 3}
    generator.clear_cache()
    assert generator.cache_stats()["size"] == 0


def test_untracked_file_reads_as_added(generator):
    assert generator.generate([change("new_module.py", "untracked", "??")]) == "feat: add new_module.py"
    mixed = [change("a.py", "modified"), change("b.py", "untracked", "??")]
    assert generator.generate(mixed) == "feat: add 2 files"
