from __future__ import annotations

from typing import List

import httpx

from ..models import ConsolidatedContactModel, ContactRecord, HealthResponse, IdentifyRequest


class IdentityServiceClient:
    """Lightweight SDK for interacting with the Identity Service."""

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    @staticmethod
    def _payload(email: str | None, phone_number: str | None) -> dict[str, object]:
        request = IdentifyRequest(email=email, phone_number=phone_number)
        return request.model_dump(mode="json", by_alias=True, exclude_none=True)

    def identify(self, email: str | None = None, phone_number: str | None = None) -> ConsolidatedContactModel:
        response = httpx.post(
            f"{self._base_url}/identify",
            json=self._payload(email, phone_number),
            headers=self._headers(),
            timeout=self._timeout,
        )
        response.raise_for_status()
        return ConsolidatedContactModel.model_validate(response.json()["contact"])

    def list_contacts(self) -> List[ContactRecord]:
        response = httpx.get(f"{self._base_url}/contacts", headers=self._headers(), timeout=self._timeout)
        response.raise_for_status()
        return [ContactRecord.model_validate(item) for item in response.json()]

    def health(self) -> HealthResponse:
        response = httpx.get(f"{self._base_url}/health", timeout=self._timeout)
        response.raise_for_status()
        return HealthResponse.model_validate(response.json())

    async def aidentify(self, email: str | None = None, phone_number: str | None = None) -> ConsolidatedContactModel:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{self._base_url}/identify",
                json=self._payload(email, phone_number),
                headers=self._headers(),
            )
        response.raise_for_status()
        return ConsolidatedContactModel.model_validate(response.json()["contact"])


__all__ = ["IdentityServiceClient"]
