"""MegaZap webhook response payloads.

MegaZap accepts exactly one reply per inbound message, returned as the
webhook response body.
"""

from typing import Literal

from pydantic import BaseModel, Field


class Attachment(BaseModel):
    position: Literal["AFTER", "BEFORE"] = "AFTER"
    type: Literal["DOCUMENT"] = "DOCUMENT"
    name: str
    base64: str


class InformationPayload(BaseModel):
    type: Literal["INFORMATION"] = "INFORMATION"
    text: str
    attachments: list[Attachment] | None = None


class MenuCallbackContact(BaseModel):
    key: str


class MenuCallbackData(BaseModel):
    text: str
    contact: MenuCallbackContact
    id: str


class MenuCallback(BaseModel):
    endpoint: str | None = None
    data: MenuCallbackData


class MenuItem(BaseModel):
    number: int
    text: str
    callback: MenuCallback


class MenuPayload(BaseModel):
    type: Literal["MENU"] = "MENU"
    text: str | None = None
    items: list[MenuItem] = Field(default_factory=list)


class DirectToMenuPayload(BaseModel):
    type: Literal["DIRECT_TO_MENU"] = "DIRECT_TO_MENU"
    menuUUID: str
