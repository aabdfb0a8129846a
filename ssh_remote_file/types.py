from __future__ import annotations

from typing import TypedDict


class RemoteFileStateDict(TypedDict):
    id: str
    path: str
    content: str
    permissions: str
    owner: str
    group: str
    owner_name: str
    group_name: str
