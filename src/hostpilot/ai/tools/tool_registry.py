"""Capability registry for agent tools.

The registry is a declarative catalogue: each tool is registered once at
startup with its schema (name, description, ordered parameters, family and
``dangerous`` flag). Names are globally unique. Once frozen, the registry
refuses further registrations for the rest of the process lifetime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Sequence

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from .base import BaseTool, ToolFamily
from .errors import ValidationToolError

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParameterSchema:
    """One named argument of a tool.

    ``type`` is a JSON Schema primitive (``string``, ``integer``, ``number``
    or ``boolean``). ``enum`` and ``min_length`` narrow what the model may
    send; ``default`` is advertised to the model but not injected.
    """

    name: str
    type: str
    description: str
    required: bool = False
    default: Any = None
    enum: Sequence[Any] | None = None
    min_length: int | None = None

    def to_json_schema(self) -> dict[str, Any]:
        constraints = {
            "default": self.default,
            "enum": list(self.enum) if self.enum else None,
            "minLength": self.min_length,
        }
        return {
            "type": self.type,
            "description": self.description,
            **{keyword: value for keyword, value in constraints.items() if value is not None},
        }


@dataclass(slots=True, frozen=True)
class ToolSchema:
    """What the model is told about a tool, and what calls to it must look like."""

    name: str
    description: str
    parameters: Sequence[ParameterSchema] = field(default_factory=tuple)
    family: ToolFamily = ToolFamily.SYSTEM
    dangerous: bool = False

    def to_json_schema(self) -> dict[str, Any]:
        """The parameter list as a closed JSON Schema object."""
        document: dict[str, Any] = {
            "type": "object",
            "properties": {param.name: param.to_json_schema() for param in self.parameters},
            "additionalProperties": False,
        }
        mandatory = [param.name for param in self.parameters if param.required]
        if mandatory:
            document["required"] = mandatory
        return document

    def validate_arguments(self, arguments: Mapping[str, Any]) -> None:
        """Validate call parameters against the declared schema.

        Raises:
            ValidationToolError: If a parameter is missing, unknown or mistyped.
        """
        validator = Draft202012Validator(self.to_json_schema())
        error = best_match(validator.iter_errors(dict(arguments)))
        if error is None:
            return

        parameter: str | None = None
        expected: str | None = None
        if error.validator == "required":
            missing = [name for name in error.validator_value if name not in arguments]
            parameter = missing[0] if missing else None
            message = f"Missing required parameter '{parameter}'"
        elif error.validator == "additionalProperties":
            known = {param.name for param in self.parameters}
            unknown = sorted(set(arguments) - known)
            parameter = unknown[0] if unknown else None
            message = f"Unknown parameter '{parameter}'"
        else:
            parameter = str(error.path[0]) if error.path else None
            if error.validator == "type":
                expected = str(error.validator_value)
            message = f"Invalid value for '{parameter}': {error.message}"

        raise ValidationToolError(
            message=message,
            parameter=parameter,
            expected=expected,
            details={"tool": self.name},
        )

    def to_markdown(self) -> str:
        """Render the tool for the system prompt catalogue."""
        lines = [f"### {self.name}", self.description]
        if self.parameters:
            lines.append("**Parameters:**")
            for param in self.parameters:
                requirement = "required" if param.required else "optional"
                lines.append(f"- `{param.name}` ({param.type}, {requirement}): {param.description}")
        if self.dangerous:
            lines.append("⚠️ *Dangerous tool: requires operator confirmation*")
        return "\n".join(lines)


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """A registered tool with its implementation and schema."""

    schema: ToolSchema
    impl: BaseTool

    @property
    def name(self) -> str:
        return self.schema.name

    @property
    def dangerous(self) -> bool:
        return self.schema.dangerous


class RegistrationError(RuntimeError):
    """A tool could not be added to the registry."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"cannot register tool '{name}': {reason}")
        self.name = name
        self.reason = reason


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Name-keyed catalogue of the tools the model may call.

    Built once at startup (see :func:`~hostpilot.ai.tools.catalog.build_default_registry`)
    and then frozen; iteration and :meth:`list_tools` keep registration order.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ToolRegistration] = {}
        self._frozen = False

    def register(self, tool: BaseTool, *, schema: ToolSchema) -> None:
        """Add ``tool`` under ``schema.name``.

        Raises:
            RegistrationError: The registry is frozen, the name is empty or
                taken, or ``tool`` disagrees with ``schema`` on name or family.
        """
        name = schema.name
        problem = None
        if self._frozen:
            problem = "registry is frozen"
        elif not name:
            problem = "tool name is required"
        elif name in self._entries:
            problem = "name already registered"
        elif tool.name != name:
            problem = f"implementation is named '{tool.name}'"
        elif getattr(tool, "family", None) is not schema.family:
            problem = f"implementation family does not match {schema.family.name}"
        if problem:
            raise RegistrationError(name, problem)

        self._entries[name] = ToolRegistration(schema=schema, impl=tool)
        LOGGER.debug("Tool %s registered [%s%s]", name, schema.family.name, ", dangerous" if schema.dangerous else "")

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get_registration(self, name: str) -> ToolRegistration | None:
        return self._entries.get(name)

    def lookup(self, name: str) -> ToolSchema | None:
        entry = self._entries.get(name)
        return None if entry is None else entry.schema

    def get_tool(self, name: str) -> BaseTool | None:
        entry = self._entries.get(name)
        return None if entry is None else entry.impl

    def has_tool(self, name: str) -> bool:
        return name in self

    def is_dangerous(self, name: str) -> bool:
        """Unknown names are not dangerous; they fail lookup instead."""
        entry = self._entries.get(name)
        return entry is not None and entry.dangerous

    def list_tools(self, *, family: ToolFamily | None = None) -> list[str]:
        return [entry.name for entry in self if family is None or entry.schema.family is family]

    def get_all_schemas(self) -> list[ToolSchema]:
        return [entry.schema for entry in self]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ToolRegistration]:
        return iter(tuple(self._entries.values()))


__all__ = [
    "ParameterSchema",
    "RegistrationError",
    "ToolRegistration",
    "ToolRegistry",
    "ToolSchema",
]
