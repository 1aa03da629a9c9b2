"""Project-level models: context and top-level resource declarations."""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .service import string_mapping


class ResourceDeclaration(BaseModel):
    """Common shape of top-level ``volumes:`` and ``networks:`` entries."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    name: Optional[str] = Field(default=None)
    external: bool = Field(default=False)
    driver: Optional[str] = Field(default=None)
    driver_opts: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)

    @field_validator("external", mode="before")
    @classmethod
    def external_flag(cls, v: Any) -> Any:
        # Legacy form: ``external: {name: foo}``
        if isinstance(v, dict):
            return True
        return False if v is None else v

    @field_validator("driver_opts", "labels", mode="before")
    @classmethod
    def string_values(cls, v: Any) -> Any:
        return string_mapping(v)


class VolumeDeclaration(ResourceDeclaration):
    """Top-level named volume."""


class NetworkDeclaration(ResourceDeclaration):
    """Top-level network."""


class ProjectContext(BaseModel):
    """Project information needed to resolve and create engine resources."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="")
    working_dir: str = Field(default_factory=os.getcwd)
    volumes: Dict[str, VolumeDeclaration] = Field(default_factory=dict)
    networks: Dict[str, NetworkDeclaration] = Field(default_factory=dict)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> Any:
        return "" if v is None else str(v).strip()

    @field_validator("volumes", "networks", mode="before")
    @classmethod
    def empty_declarations(cls, v: Any) -> Any:
        """``volumes: {data: }`` declares ``data`` with all defaults."""
        if v is None:
            return {}
        return {key: ({} if decl is None else decl) for key, decl in v.items()}
