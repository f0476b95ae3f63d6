"""Pydantic models for declared and observed broker objects.

Each object kind has two models:
1. A desired model, validated at the boundary (fail fast, before any
   broker call) with kind-specific defaults filled in
2. An observed model, holding what was last reconciled plus the computed
   identifier. Observed models produced by import carry key fields only

Replace-trigger fields are declared per kind; a change to any of them must
be applied by destroying and recreating the object.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from .config import DEFAULT_VHOST
from .errors import ConfigurationInvalid
from .identity import (
    EXCHANGE_FORMAT,
    PERMISSION_FORMAT,
    TOPIC_PERMISSION_FORMAT,
    IdentifierFormat,
    encode_as,
)


class ResourceKind(str, Enum):
    """Broker object kinds managed by the operator."""

    USER = "user"
    VHOST = "vhost"
    PERMISSIONS = "permissions"
    TOPIC_PERMISSIONS = "topic_permissions"
    EXCHANGE = "exchange"


NonEmptyStr = Annotated[str, Field(min_length=1)]


def _default_vhost(v: Any) -> Any:
    return DEFAULT_VHOST if v is None or v == "" else v


def _drop_empty_tags(v: list[str] | None) -> list[str] | None:
    if v is None:
        return None
    return [tag for tag in v if tag]


def _split_tags(v: Any) -> Any:
    # Older brokers report tags as a comma-separated string
    if isinstance(v, str):
        return [tag.strip() for tag in v.split(",")]
    return v


# =============================================================================
# Base Models
# =============================================================================


class DesiredObject(BaseModel):
    """Base for declared objects."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    KIND: ClassVar[ResourceKind]
    REPLACE_TRIGGERS: ClassVar[tuple[str, ...]]
    # Declared-only fields that are never compared or persisted
    WRITE_ONLY_FIELDS: ClassVar[tuple[str, ...]] = ()

    @property
    def identifier(self) -> str:
        raise NotImplementedError("Subclasses must implement identifier")

    def comparable(self) -> dict[str, Any]:
        """Attributes compared against observed state, write-only fields excluded."""
        return self.model_dump(exclude=set(self.WRITE_ONLY_FIELDS))


class ObservedObject(BaseModel):
    """Base for observed objects as persisted in the state sink."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    KIND: ClassVar[ResourceKind]

    id: str = ""

    def comparable(self) -> dict[str, Any]:
        return self.model_dump(exclude={"id"})

    def to_record(self) -> dict[str, Any]:
        """Serialize for the state sink."""
        return self.model_dump(mode="json")


def validate_desired(model: type[DesiredObject], data: dict[str, Any]) -> DesiredObject:
    """Validate declared attributes, converting failures to ConfigurationInvalid."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ConfigurationInvalid(
            f"invalid {model.KIND.value} declaration: {'; '.join(errors)}",
            errors=errors,
            operation="validate",
            kind=model.KIND.value,
        ) from e


# =============================================================================
# User
# =============================================================================


class UserSpec(DesiredObject):
    """Declared user.

    The password is write-only; password_version is the marker whose
    change triggers a new password hash on update.
    """

    KIND: ClassVar[ResourceKind] = ResourceKind.USER
    REPLACE_TRIGGERS: ClassVar[tuple[str, ...]] = ()
    WRITE_ONLY_FIELDS: ClassVar[tuple[str, ...]] = ("password",)

    name: NonEmptyStr
    password: SecretStr | None = Field(None, alias="passwordWo")
    password_version: NonEmptyStr = Field(alias="passwordWoVersion")
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> Any:
        if v is None:
            return []
        return _drop_empty_tags(_split_tags(v))

    @property
    def identifier(self) -> str:
        return self.name

    def password_value(self) -> str | None:
        return self.password.get_secret_value() if self.password else None

    def to_observed(self) -> UserState:
        return UserState(
            id=self.identifier,
            name=self.name,
            password_version=self.password_version,
            tags=list(self.tags),
        )


class UserState(ObservedObject):
    """Observed user. The password itself is never stored."""

    KIND: ClassVar[ResourceKind] = ResourceKind.USER

    name: NonEmptyStr
    password_version: str | None = None
    tags: list[str] | None = None


# =============================================================================
# Virtual Host
# =============================================================================


class VhostSpec(DesiredObject):
    """Declared virtual host. Only the name forces replacement."""

    KIND: ClassVar[ResourceKind] = ResourceKind.VHOST
    REPLACE_TRIGGERS: ClassVar[tuple[str, ...]] = ("name",)

    name: NonEmptyStr
    description: str = ""
    default_queue_type: str | None = Field(None, alias="defaultQueueType")
    tracing: bool = False
    tags: list[str] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def identifier(self) -> str:
        return self.name

    def to_observed(self) -> VhostState:
        return VhostState(
            id=self.identifier,
            name=self.name,
            description=self.description,
            default_queue_type=self.default_queue_type,
            tracing=self.tracing,
            tags=list(self.tags),
        )


class VhostState(ObservedObject):
    KIND: ClassVar[ResourceKind] = ResourceKind.VHOST

    name: NonEmptyStr
    description: str | None = None
    default_queue_type: str | None = None
    tracing: bool | None = None
    tags: list[str] | None = None


# =============================================================================
# Permissions
# =============================================================================


class PermissionSpec(DesiredObject):
    """Declared configure/write/read grant for a user in a vhost.

    The three regex fields are required and have no implicit default.
    An empty string is a valid value meaning "match nothing".
    """

    KIND: ClassVar[ResourceKind] = ResourceKind.PERMISSIONS
    REPLACE_TRIGGERS: ClassVar[tuple[str, ...]] = ("user", "vhost")
    FORMAT: ClassVar[IdentifierFormat] = PERMISSION_FORMAT

    user: NonEmptyStr
    vhost: str = DEFAULT_VHOST
    configure: str
    write: str
    read: str

    @field_validator("vhost", mode="before")
    @classmethod
    def default_vhost(cls, v: Any) -> Any:
        return _default_vhost(v)

    @property
    def identifier(self) -> str:
        return encode_as(
            self.FORMAT, {"user": self.user, "vhost": self.vhost}, kind=self.KIND.value
        )

    def to_observed(self) -> PermissionState:
        return PermissionState(
            id=self.identifier,
            user=self.user,
            vhost=self.vhost,
            configure=self.configure,
            write=self.write,
            read=self.read,
        )


class PermissionState(ObservedObject):
    KIND: ClassVar[ResourceKind] = ResourceKind.PERMISSIONS

    user: NonEmptyStr
    vhost: NonEmptyStr
    configure: str | None = None
    write: str | None = None
    read: str | None = None


# =============================================================================
# Topic Permissions
# =============================================================================


class TopicPermissionSpec(DesiredObject):
    """Declared write/read grant for a user on one topic exchange."""

    KIND: ClassVar[ResourceKind] = ResourceKind.TOPIC_PERMISSIONS
    REPLACE_TRIGGERS: ClassVar[tuple[str, ...]] = ("user", "vhost", "exchange")
    FORMAT: ClassVar[IdentifierFormat] = TOPIC_PERMISSION_FORMAT

    user: NonEmptyStr
    vhost: str = DEFAULT_VHOST
    exchange: NonEmptyStr
    write: str
    read: str

    @field_validator("vhost", mode="before")
    @classmethod
    def default_vhost(cls, v: Any) -> Any:
        return _default_vhost(v)

    @property
    def identifier(self) -> str:
        return encode_as(
            self.FORMAT,
            {"user": self.user, "vhost": self.vhost, "exchange": self.exchange},
            kind=self.KIND.value,
        )

    def to_observed(self) -> TopicPermissionState:
        return TopicPermissionState(
            id=self.identifier,
            user=self.user,
            vhost=self.vhost,
            exchange=self.exchange,
            write=self.write,
            read=self.read,
        )


class TopicPermissionState(ObservedObject):
    KIND: ClassVar[ResourceKind] = ResourceKind.TOPIC_PERMISSIONS

    user: NonEmptyStr
    vhost: NonEmptyStr
    exchange: NonEmptyStr
    write: str | None = None
    read: str | None = None


# =============================================================================
# Exchange
# =============================================================================


class ExchangeSettings(BaseModel):
    """Exchange properties. Every one of them is replace-only."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: NonEmptyStr
    durable: bool = False
    auto_delete: bool = Field(False, alias="autoDelete")
    arguments: dict[str, str] = Field(default_factory=dict)

    @field_validator("durable", "auto_delete", mode="before")
    @classmethod
    def default_false(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("arguments", mode="before")
    @classmethod
    def stringify_arguments(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): _argument_to_str(val) for k, val in v.items()}
        return v


def _argument_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ExchangeSpec(DesiredObject):
    """Declared exchange. The whole object is replace-only."""

    KIND: ClassVar[ResourceKind] = ResourceKind.EXCHANGE
    REPLACE_TRIGGERS: ClassVar[tuple[str, ...]] = ("name", "vhost", "settings")
    FORMAT: ClassVar[IdentifierFormat] = EXCHANGE_FORMAT

    name: NonEmptyStr
    vhost: str = DEFAULT_VHOST
    settings: ExchangeSettings

    @field_validator("vhost", mode="before")
    @classmethod
    def default_vhost(cls, v: Any) -> Any:
        return _default_vhost(v)

    @property
    def identifier(self) -> str:
        return encode_as(
            self.FORMAT, {"name": self.name, "vhost": self.vhost}, kind=self.KIND.value
        )

    def to_observed(self) -> ExchangeState:
        return ExchangeState(
            id=self.identifier,
            name=self.name,
            vhost=self.vhost,
            settings=self.settings.model_copy(deep=True),
        )


class ExchangeState(ObservedObject):
    KIND: ClassVar[ResourceKind] = ResourceKind.EXCHANGE

    name: NonEmptyStr
    vhost: NonEmptyStr
    settings: ExchangeSettings | None = None


# =============================================================================
# Registry
# =============================================================================

DESIRED_MODELS: dict[ResourceKind, type[DesiredObject]] = {
    ResourceKind.USER: UserSpec,
    ResourceKind.VHOST: VhostSpec,
    ResourceKind.PERMISSIONS: PermissionSpec,
    ResourceKind.TOPIC_PERMISSIONS: TopicPermissionSpec,
    ResourceKind.EXCHANGE: ExchangeSpec,
}

OBSERVED_MODELS: dict[ResourceKind, type[ObservedObject]] = {
    ResourceKind.USER: UserState,
    ResourceKind.VHOST: VhostState,
    ResourceKind.PERMISSIONS: PermissionState,
    ResourceKind.TOPIC_PERMISSIONS: TopicPermissionState,
    ResourceKind.EXCHANGE: ExchangeState,
}


def get_kind(value: str) -> ResourceKind:
    """Resolve a kind name, accepting dashes for underscores.

    Raises:
        ValueError: If the kind is not recognized.
    """
    try:
        return ResourceKind(value.replace("-", "_"))
    except ValueError as e:
        valid = [k.value for k in ResourceKind]
        raise ValueError(f"Unknown kind '{value}'. Valid kinds: {valid}") from e
