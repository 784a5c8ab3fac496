"""
Package identifiers.

A package is named ``author/name``.  ``PackageId`` is the single place that
string gets split and validated; everything else passes the parsed value
around.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_serializer, model_validator

from mod_errors import InvalidPackageId

SEPARATOR = "/"


class PackageId(BaseModel):
    """Immutable ``author/name`` pair.  Serializes back to the joined string."""

    model_config = ConfigDict(frozen=True)

    author: str
    name: str

    @model_validator(mode="before")
    @classmethod
    def _split(cls, value):
        if isinstance(value, str):
            parts = value.split(SEPARATOR)
            if len(parts) != 2:
                raise ValueError(
                    f"expected exactly one '{SEPARATOR}' separating author and name, got {value!r}"
                )
            return {"author": parts[0], "name": parts[1]}
        return value

    @field_validator("author", "name")
    @classmethod
    def _check_segment(cls, v: str) -> str:
        if not v:
            raise ValueError("segment must not be empty")
        if v != v.strip():
            raise ValueError(f"segment {v!r} has surrounding whitespace")
        if SEPARATOR in v or "\\" in v:
            raise ValueError(f"segment {v!r} contains a path separator")
        if v in (".", ".."):
            raise ValueError(f"segment {v!r} is not a valid name")
        return v

    @model_serializer
    def _as_string(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"{self.author}{SEPARATOR}{self.name}"

    def __repr__(self) -> str:
        return f"PackageId({str(self)!r})"

    @classmethod
    def parse(cls, value: str) -> PackageId:
        try:
            return cls.model_validate(value)
        except ValidationError as exc:
            reasons = "; ".join(err["msg"] for err in exc.errors())
            raise InvalidPackageId(f"Invalid package id {value!r}: {reasons}") from exc
