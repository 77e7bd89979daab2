"""Rule-based commit message generation."""

from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from savepoint.models import PendingChange

FALLBACK_MESSAGE = "chore: update files"

SOURCE_EXTENSIONS = frozenset({"js", "ts", "jsx", "tsx", "py", "java", "cpp", "c", "cs"})
STYLE_EXTENSIONS = frozenset({"css", "scss", "less", "sass"})
DOC_EXTENSIONS = frozenset({"md", "txt", "rst", "doc", "docx"})
CONFIG_EXTENSIONS = frozenset({"json", "yml", "yaml", "toml", "ini", "config"})
TEST_MARKERS = ("test", "spec")

# Labels from the change inspector -> verb used in the subject line.
# Untracked files are new to the repository, so they read as added.
VERB_FOR_LABEL = {
    "added": "add",
    "untracked": "add",
    "modified": "update",
    "deleted": "remove",
    "renamed": "rename",
}
SINGLE_FILE_VERBS = ("add", "remove", "rename")
DOMINANT_VERBS = ("add", "update", "remove", "rename")

FileEntry = Union[PendingChange, Mapping[str, Any]]


class _File(NamedTuple):
    name: str
    kind: str

    @property
    def basename(self) -> str:
        return self.name.replace("\\", "/").split("/")[-1]

    @property
    def extension(self) -> str:
        if "." not in self.basename:
            return "unknown"
        return self.basename.rsplit(".", 1)[-1].lower()


def _has_extension(extensions: Iterable[str]) -> Callable[[List[_File]], bool]:
    wanted = frozenset(extensions)
    return lambda files: any(f.extension in wanted for f in files)


def _looks_like_test(files: List[_File]) -> bool:
    return any(
        marker in f.extension or marker in f.basename.lower()
        for f in files
        for marker in TEST_MARKERS
    )


# Evaluated in order; the first matching rule names the commit type.
COMMIT_TYPE_RULES: List[Tuple[Callable[[List[_File]], bool], str]] = [
    (_has_extension(SOURCE_EXTENSIONS), "feat"),
    (_has_extension(STYLE_EXTENSIONS), "style"),
    (_has_extension(DOC_EXTENSIONS), "docs"),
    (_has_extension(CONFIG_EXTENSIONS), "config"),
    (_looks_like_test, "test"),
]
DEFAULT_COMMIT_TYPE = "chore"


def _normalize(entry: FileEntry) -> Optional[_File]:
    """Pull name/kind out of a change record, or None if either is missing."""
    if isinstance(entry, PendingChange):
        name, kind = entry.file_name, entry.kind
    elif isinstance(entry, Mapping):
        name = entry.get("file_name") or entry.get("fileName")
        kind = entry.get("kind") or entry.get("type")
    else:
        return None
    if not isinstance(name, str) or not isinstance(kind, str) or not name or not kind:
        return None
    return _File(name, kind)


def determine_commit_type(files: List[_File]) -> str:
    for matches, commit_type in COMMIT_TYPE_RULES:
        if matches(files):
            return commit_type
    return DEFAULT_COMMIT_TYPE


def _verbs(files: List[_File]) -> set:
    verbs = set()
    for f in files:
        for label in f.kind.split(","):
            verb = VERB_FOR_LABEL.get(label.strip())
            if verb:
                verbs.add(verb)
    return verbs


def generate_subject(files: List[_File]) -> str:
    verbs = _verbs(files)
    if len(files) == 1:
        verb = next((v for v in SINGLE_FILE_VERBS if v in verbs), "update")
        return f"{verb} {files[0].basename}"
    verb = next((v for v in DOMINANT_VERBS if v in verbs), "modify")
    return f"{verb} {len(files)} files"


class MessageGenerator:
    """Builds conventional-commit style messages from a change list.

    Output depends only on the (order-insensitive) file list, so results
    are memoized in a small bounded cache.
    """

    def __init__(self, max_size: int = 50):
        self.max_size = max_size
        self._cache: "OrderedDict[str, str]" = OrderedDict()

    def generate(self, files: Iterable[FileEntry], summary: str = "") -> str:
        normalized = [f for f in (_normalize(e) for e in files or []) if f is not None]
        key = self.cache_key(normalized, summary)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if not normalized:
            message = FALLBACK_MESSAGE
        else:
            message = f"{determine_commit_type(normalized)}: {generate_subject(normalized)}"

        self._cache[key] = message
        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)
        return message

    @staticmethod
    def cache_key(files: List[_File], summary: str) -> str:
        signature = "|".join(sorted(f"{f.name}:{f.kind}" for f in files))
        return f"{signature}::{summary or ''}"

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> Dict[str, int]:
        return {"size": len(self._cache), "max_size": self.max_size}
