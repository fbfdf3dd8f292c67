"""
interceptor/models.py

Data structures produced by the command classifier.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


class Ecosystem(Enum):
    """Package registry a parsed package belongs to."""
    NPM = "npm"
    PYPI = "pypi"
    HOMEBREW = "homebrew"


@dataclass(frozen=True)
class ParsedPackage:
    """
    One package recovered from an install / execute command.

    Attributes:
        name      : Registry name, without extras or version suffix.
                    Scoped npm names keep their leading '@' (``@types/node``).
        version   : Exact version if the command pinned one, else None.
        ecosystem : Registry the name belongs to.
    """
    name: str
    version: Optional[str]
    ecosystem: Ecosystem

    def spec(self) -> str:
        """Render the package the way it would be typed on a command line."""
        if self.version is None:
            return self.name
        if self.ecosystem is Ecosystem.PYPI:
            return f"{self.name}=={self.version}"
        return f"{self.name}@{self.version}"

    def to_dict(self) -> dict:
        data = {"name": self.name, "ecosystem": self.ecosystem.value}
        if self.version is not None:
            data["version"] = self.version
        return data


@dataclass(frozen=True)
class NotRecognized:
    """
    The command is not a package installation or remote execution.

    ``depth_exhausted`` is set when a nested ``sh -c`` chain was deeper than
    the resolver follows, so part of the command was never analysed.
    """
    depth_exhausted: bool = False


@dataclass(frozen=True)
class Packages:
    """The command installs or executes at least one registry package."""
    packages: Tuple[ParsedPackage, ...]
    depth_exhausted: bool = False

    def __post_init__(self) -> None:
        if not self.packages:
            raise ValueError("Packages requires at least one ParsedPackage")


Classification = Union[NotRecognized, Packages]

NOT_RECOGNIZED = NotRecognized()
