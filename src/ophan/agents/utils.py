"""Loading an agent's guidance documents from ``.ophan/``."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ophan.core.logging import get_logger

_logger = get_logger("agents.utils")

DOCUMENT_SEPARATOR = "\n\n---\n\n"


@dataclass
class LoadedContent:
    content: str = ""
    files: list[str] = field(default_factory=list)
    """Paths of the files that were actually found."""


class ContentLoader:
    """Concatenates markdown documents, each under a ``# <name>`` heading."""

    @staticmethod
    def load_multiple(
        base_dir: Path,
        file_names: tuple[str, ...] | list[str],
        separator: str = DOCUMENT_SEPARATOR,
    ) -> LoadedContent:
        contents: list[str] = []
        loaded: list[str] = []
        for file_name in file_names:
            path = base_dir / file_name
            try:
                text = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                continue
            except OSError as e:
                _logger.warning("guidance_file_unreadable", path=str(path), error=str(e))
                continue
            contents.append(f"# {file_name}\n\n{text}")
            loaded.append(str(path))
        return LoadedContent(content=separator.join(contents), files=loaded)

    @classmethod
    def load_guidelines(cls, ophan_dir: Path, file_names: tuple[str, ...] | list[str]) -> LoadedContent:
        return cls.load_multiple(ophan_dir / "guidelines", file_names)

    @classmethod
    def load_criteria(cls, ophan_dir: Path, file_names: tuple[str, ...] | list[str]) -> LoadedContent:
        return cls.load_multiple(ophan_dir / "criteria", file_names)
