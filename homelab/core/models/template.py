"""
Rendered stack model — output of the stack renderer.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class GeneratedFile(BaseModel):
    """A file produced by a renderer.

    Attributes:
        path:    Absolute destination path.
        content: Full file content.
        mode:    Octal permission string.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    mode: str = "0644"


class RenderedStack(BaseModel):
    """Compose document and environment file for one stack."""

    model_config = ConfigDict(frozen=True)

    compose: GeneratedFile
    env: GeneratedFile

    def files(self) -> list[GeneratedFile]:
        return [self.compose, self.env]
