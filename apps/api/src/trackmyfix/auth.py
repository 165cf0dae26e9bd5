from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request

from trackmyfix.config import get_settings
from trackmyfix.services.jobs.repository import JobLookup
from trackmyfix.services.jobs.types import Owner


class AccessError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.detail)


@dataclass(frozen=True)
class ManagerIdentity:
    email: str


def get_manager_identity(request: Request) -> ManagerIdentity:
    # The verified email is injected by the authenticating proxy in front of the API.
    header_name = get_settings().manager_identity_header
    email = (request.headers.get(header_name) or "").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail="Unauthorized.")
    return ManagerIdentity(email=email)


def authorize_owner_access(jobs: JobLookup, owner_id: str, manager: ManagerIdentity) -> Owner:
    owner = jobs.get_owner(owner_id)
    if owner is None:
        raise AccessError(404, "Owner not found.")
    if owner.email.strip().lower() != manager.email:
        raise AccessError(403, "Forbidden.")
    return owner
