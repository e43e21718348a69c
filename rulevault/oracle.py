"""
RuleVault - HTTP client for the external compliance agent.

The agent is an opaque oracle: it extracts rules from uploaded documents,
validates rules against portfolio holdings and answers free-form questions.
This client only moves requests and raw payloads; interpreting the payload
is left to ``rulevault.normalize``.
"""

import logging
from typing import Any, Optional, Sequence

import httpx

from .exceptions import AuthenticationError, OracleError
from .normalize import is_success, unwrap

logger = logging.getLogger("rulevault.oracle")

EXTRACTION_PROMPT = (
    "Extract all compliance rules from the uploaded investment guidelines document: "
    "{filename}. Only extract rules with confidence scores and source traceability. "
    "Do not validate against portfolio yet."
)

VALIDATION_PROMPT = (
    "Validate these compliance rules against our portfolio holdings: {rules}. "
    "Provide detailed compliance score and breach analysis for all funds."
)


def extraction_request(filename: str) -> str:
    return EXTRACTION_PROMPT.format(filename=filename)


def validation_request(rule_descriptions: Sequence[str]) -> str:
    return VALIDATION_PROMPT.format(rules="; ".join(rule_descriptions))


class AsyncOracleClient:
    """
    Asynchronous client for the compliance agent.

    Every call returns the agent's raw payload and raises ``OracleError``
    on transport errors, HTTP errors or a non-"success" status, so callers
    can treat all failure modes the same way.

    Example:
        ```python
        async with AsyncOracleClient(
            base_url="https://agent.example.com",
            api_key="your-api-key",
            agent_id="compliance-manager",
        ) as oracle:
            upload = await oracle.upload("IMA.pdf", pdf_bytes)
            payload = await oracle.extract_rules("IMA.pdf", upload["asset_ids"])
        ```
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        agent_id: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.agent_id = agent_id
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"X-API-Key": api_key},
            timeout=timeout,
            transport=transport,
        )

    def _handle_response(self, response: httpx.Response) -> dict:
        """Handle HTTP response and raise appropriate exceptions."""
        if response.status_code in (401, 403):
            raise AuthenticationError(
                "Agent rejected the API key",
                status_code=response.status_code,
            )
        elif response.status_code >= 400:
            raise OracleError(
                f"Agent request failed with status {response.status_code}",
                status_code=response.status_code,
                response=_json_or_none(response),
            )

        data = _json_or_none(response)
        if not isinstance(data, dict):
            raise OracleError("Agent returned a non-object payload", status_code=response.status_code)
        return data

    async def _post(self, path: str, **kwargs: Any) -> dict:
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.HTTPError as e:
            raise OracleError(f"Agent transport error: {e}") from e
        return self._handle_response(response)

    # ==================== Uploads ====================

    async def upload(
        self,
        filename: str,
        content: bytes,
        content_type: str = "application/pdf",
    ) -> dict:
        """
        Upload a document so later agent calls can reference it.

        Returns:
            The upload payload; ``asset_ids`` holds the references to attach.
        """
        data = await self._post(
            "/api/v1/upload",
            files={"files": (filename, content, content_type)},
        )
        if not data.get("success"):
            raise OracleError(
                data.get("message") or f"Upload of {filename} failed",
                response=data,
            )
        data.setdefault("asset_ids", [])
        logger.info("Uploaded %s as %d asset(s)", filename, len(data["asset_ids"]))
        return data

    # ==================== Agent calls ====================

    async def call(
        self,
        message: str,
        assets: Optional[Sequence[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> dict:
        """Send one message to the agent and return its successful payload."""
        body: dict[str, Any] = {"message": message, "agent_id": self.agent_id}
        if assets:
            body["assets"] = list(assets)
        if context:
            body["context"] = context

        data = await self._post("/api/v1/agent", json=body)
        if not is_success(data):
            status = unwrap(data).get("status")
            raise OracleError(f"Agent reported status {status!r}", response=data)
        return data

    async def extract_rules(self, filename: str, asset_ids: Sequence[str] = ()) -> dict:
        return await self.call(extraction_request(filename), assets=asset_ids)

    async def validate_rules(
        self,
        rule_descriptions: Sequence[str],
        portfolio_context: Optional[dict[str, Any]] = None,
    ) -> dict:
        return await self.call(validation_request(rule_descriptions), context=portfolio_context)

    async def query(self, text: str) -> dict:
        return await self.call(text)

    async def close(self) -> None:
        """Close the HTTP client connection."""
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncOracleClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
