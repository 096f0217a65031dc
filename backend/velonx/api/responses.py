"""Success envelope and camelCase output models shared by the routers."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, (list, tuple)):
        return [_dump(item) for item in data]
    return data


def ok(data: Any = None, *, message: Optional[str] = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = _dump(data)
    if message:
        body["message"] = message
    for key, value in extra.items():
        body[key] = _dump(value)
    return body
