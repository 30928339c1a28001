"""Policy engine contracts.

The policy engine decides, per mediated call, whether the call proceeds,
proceeds with an audit record, or is blocked. Decisions depend on who is
calling (file path, file name, declared class) and on the target scope,
never on call arguments.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class PolicyEffect(str, Enum):
    FREE = "free"
    AUDIT = "audit"
    BLOCK = "block"


class Operand(str, Enum):
    AND = "and"
    OR = "or"


_OPERAND_ALIASES = {"&&": "and", "||": "or"}


class CallerIdentity(BaseModel):
    """Resolved origin of a mediated call. Any field may be unresolved."""

    model_config = ConfigDict(frozen=True)

    file_path: str | None = Field(
        None, validation_alias=AliasChoices("file_path", "filePath")
    )
    file_name: str | None = Field(
        None, validation_alias=AliasChoices("file_name", "fileName")
    )
    class_name: str | None = Field(
        None, validation_alias=AliasChoices("class_name", "className", "ClassName")
    )

    def describe(self) -> str:
        parts = [
            f"{k}={v}"
            for k, v in (
                ("file", self.file_path),
                ("name", self.file_name),
                ("class", self.class_name),
            )
            if v
        ]
        return ", ".join(parts) or "unknown"


class CallerMatcher(BaseModel):
    """One caller test. Exactly one field must be set.

    ``file_path`` is a glob (``*`` wildcard, leading ``!`` negates);
    ``file_name`` and ``class_name`` are exact, with a bare ``*`` meaning
    "any resolved value".
    """

    model_config = ConfigDict(frozen=True)

    file_path: str | None = Field(
        None, validation_alias=AliasChoices("file_path", "filePath")
    )
    file_name: str | None = Field(
        None, validation_alias=AliasChoices("file_name", "fileName")
    )
    class_name: str | None = Field(
        None, validation_alias=AliasChoices("class_name", "className", "ClassName")
    )

    @model_validator(mode="after")
    def _exactly_one(self) -> CallerMatcher:
        present = [v for v in (self.file_path, self.file_name, self.class_name) if v is not None]
        if len(present) != 1:
            raise ValueError(
                "caller matcher needs exactly one of filePath, fileName, className"
            )
        return self


class PolicyRule(BaseModel):
    """A single ordered rule. Earlier rules take priority."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    policy: PolicyEffect
    operand: Operand = Operand.AND
    group: list[str] | None = None
    method: list[str] | None = None
    caller: list[CallerMatcher] = []
    target: list[str] | None = None
    comment: str = ""

    @field_validator("operand", mode="before")
    @classmethod
    def _normalise_operand(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return _OPERAND_ALIASES.get(value, value.lower())
        return value

    @field_validator("group", "method", "target", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class CallDescriptor(BaseModel):
    """The intercepted call, as seen by the engine."""

    model_config = ConfigDict(frozen=True)

    method: str


class Decision(BaseModel):
    """Outcome of one evaluation. Never cached across calls."""

    model_config = ConfigDict(frozen=True)

    effect: PolicyEffect
    rule: PolicyRule | None = None
    rule_index: int | None = None

    @property
    def is_default(self) -> bool:
        return self.rule is None

    @property
    def rule_id(self) -> str:
        if self.rule is None:
            return "default"
        if self.rule.id:
            return self.rule.id
        return f"rules[{self.rule_index}]"


# Answers "is this call's target inside scope <tag>?" for targeted rules.
TargetPredicate = Callable[[str], bool]


class PolicyViolation(Exception):
    """A call matched a blocking rule while running in strict mode."""

    code = "PROTECTED_PRIMITIVE_CALL"

    def __init__(
        self,
        method: str,
        caller: CallerIdentity,
        rule_id: str,
        reference: str = "",
    ) -> None:
        self.method = method
        self.caller = caller
        self.rule_id = rule_id
        self.reference = reference
        message = (
            f"Restricted module tried to call protected primitive '{method}' "
            f"(rule: {rule_id}); Caller: {caller.describe()}."
        )
        if reference:
            message += f" Ref: {reference}"
        super().__init__(message)


class PolicyEngine(ABC):
    """Interface that the runtime policy engine must implement."""

    @abstractmethod
    def evaluate(
        self,
        call: CallDescriptor,
        caller: CallerIdentity,
        target: TargetPredicate | None = None,
    ) -> Decision:
        """Which effect applies to this call from this caller?"""
        ...
