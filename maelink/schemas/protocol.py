"""Pydantic models for inbound socket commands.

Every frame is a tagged object ``{"cmd": ..., ...}``.  The commands form a
closed discriminated union, so a frame either matches exactly one variant
with all of its required fields or is rejected.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

# Required protocol strings must be present and non-empty; range checks that
# carry their own failure reason (username length, url length) live in the
# dispatcher so they can report that reason.
RequiredStr = Annotated[str, Field(min_length=1)]


class _Command(BaseModel):
    model_config = {"extra": "ignore"}


class ClientInfo(_Command):
    cmd: Literal["client_info"]
    client: RequiredStr
    version: str | None = None
    token: str | None = None


class Register(_Command):
    cmd: Literal["reg"]
    user: RequiredStr
    pswd: RequiredStr
    code: RequiredStr
    display_name: str | None = None


class LoginPassword(_Command):
    cmd: Literal["login_pswd"]
    user: RequiredStr
    pswd: RequiredStr


class LoginToken(_Command):
    cmd: Literal["login_token"]
    token: RequiredStr


class ProvideToken(_Command):
    cmd: Literal["provide_token"]
    token: RequiredStr


class LoginSystemKey(_Command):
    cmd: Literal["login_syskey"]
    user: RequiredStr
    key: RequiredStr


class SetAvatar(_Command):
    cmd: Literal["set_avatar"]
    url: RequiredStr


Command = Annotated[
    Union[
        ClientInfo,
        Register,
        LoginPassword,
        LoginToken,
        ProvideToken,
        LoginSystemKey,
        SetAvatar,
    ],
    Field(discriminator="cmd"),
]

command_adapter: TypeAdapter[Command] = TypeAdapter(Command)
