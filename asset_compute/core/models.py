"""
Job models.

A job asks for one or more renditions of a single source. Each rendition
is described by free-form instructions (`fmt`, `width`, `name`, ...) that
only the worker interprets; the library just needs to know where the
generated file goes.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .files import file_exists_and_is_not_empty


@dataclass
class Rendition:
    """One requested output of a job."""
    instructions: dict[str, Any]
    directory: Path
    index: int = 0
    content_type: Optional[str] = None
    charset: Optional[str] = None
    post_process: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        """
        File name of the rendition.

        Explicit `name` wins, otherwise `rendition<index>.<fmt>`.
        """
        if self.instructions.get("name"):
            return str(self.instructions["name"])
        fmt = self.instructions.get("fmt")
        return f"rendition{self.index}.{fmt}" if fmt else f"rendition{self.index}"

    @property
    def path(self) -> Path:
        return self.directory / self.name

    def id(self) -> str:
        return self.name

    def exists(self) -> bool:
        return file_exists_and_is_not_empty(self.path)

    def size(self) -> Optional[int]:
        if not self.path.is_file():
            return None
        return self.path.stat().st_size

    def set_content_type(self, content_type: str, charset: Optional[str] = None) -> None:
        self.content_type = content_type
        self.charset = charset

    def describe(self) -> dict[str, Any]:
        """Metadata reported in the rendition event."""
        info: dict[str, Any] = {"name": self.name, "size": self.size()}
        if self.content_type:
            info["contentType"] = self.content_type
        if self.charset:
            info["charset"] = self.charset
        if self.post_process:
            info["postProcess"] = True
        info.update(self.metadata)
        return info


def renditions_from_params(
    params: list[dict[str, Any]],
    directory: Path,
) -> list[Rendition]:
    return [
        Rendition(instructions=dict(instructions), directory=directory, index=index)
        for index, instructions in enumerate(params or [])
    ]
