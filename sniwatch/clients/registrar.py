"""
sniwatch/clients/registrar.py

Adds a domain pattern to the appliance's manual domain list.

The console picks one of `domain_variants(domain)` and hands it here; this
client owns only the HTTP call. Every failure comes back as a
RegistrationResult with ok=False instead of an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from sniwatch.base.config import ApiConfig
from sniwatch.base.exceptions import ApiError, ErrorCode

logger = logging.getLogger(__name__)


class DomainRegistration(BaseModel):
    domain: str = Field(min_length=1)


@dataclass(frozen=True)
class RegistrationResult:
    ok: bool
    domain: str
    message: str


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    text = response.text.strip()
    return text or f"HTTP {response.status_code}"


class DomainRegistrar:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        path: str = "/api/geosite/domain",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.path = path
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, api: ApiConfig, **kwargs) -> "DomainRegistrar":
        return cls(api.base_url, timeout=api.timeout, path=api.domain_path, **kwargs)

    async def add_domain(self, domain: str) -> RegistrationResult:
        try:
            payload = DomainRegistration(domain=domain.strip())
        except ValidationError:
            return RegistrationResult(ok=False, domain=domain, message="Domain must not be empty")

        try:
            resp = await self._client.post(self.path, json=payload.model_dump())
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            error = ApiError(
                ErrorCode.API_REJECTED,
                _error_message(e.response),
                details={"domain": payload.domain, "status": e.response.status_code},
            )
            logger.warning(f"[Registrar] {error}")
            return RegistrationResult(ok=False, domain=payload.domain, message=error.message)
        except httpx.HTTPError as e:
            error = ApiError(
                ErrorCode.API_REQUEST_FAILED,
                f"Request failed: {e}",
                details={"domain": payload.domain},
            )
            logger.warning(f"[Registrar] {error}")
            return RegistrationResult(ok=False, domain=payload.domain, message=error.message)

        logger.info(f"[Registrar] Added {payload.domain} to manual domains")
        return RegistrationResult(
            ok=True,
            domain=payload.domain,
            message=f'Successfully added "{payload.domain}" to manual domains',
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "DomainRegistrar":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
