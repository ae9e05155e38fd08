"""
Remote HTTP client

Pushes and reads agent card branches on a nit-compatible remote.

Write endpoints (at the API base, signed with the agent's key):
    PUT    /agent-card/branches/{branch}
    GET    /agent-card/branches
    DELETE /agent-card/branches/{branch}
    POST   /agent-card/verify

Read endpoints (at the agent's card URL, challenge-response for non-main):
    GET /.well-known/agent-card.json
    GET /.well-known/agent-card.json?branch=faam.io
"""

import json
import logging
from typing import Optional, List, Iterable, Tuple, Dict, Any
from urllib.parse import quote

import httpx

from .auth import (
    AGENT_ID_HEADER,
    CHALLENGE_HEADER,
    SIGNATURE_HEADER,
    signed_headers,
    verify_login_payload,
)
from .errors import AuthRequired, RemoteError, Unverified
from .identity import Identity
from .models import AgentCard, PushResult, RemoteBranch, LoginPayload
from .refs import MAIN_BRANCH
from .telemetry import NitSpan, get_trace_context, record_response

logger = logging.getLogger("nit.remote")

WELL_KNOWN_CARD_PATH = "/.well-known/agent-card.json"


def _challenge_from(response: httpx.Response) -> Optional[str]:
    """The challenge token of a 401 card response, or None for any other rejection."""
    if response.status_code != 401:
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    challenge = body.get("challenge") if isinstance(body, dict) else None
    return challenge if isinstance(challenge, str) and challenge else None


class RemoteClient:
    """
    Client for one remote.

    The underlying httpx.Client can be injected (tests pass a FastAPI
    TestClient). Requests are never retried.
    """

    def __init__(
        self,
        api_base: str,
        identity: Optional[Identity] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        self.api_base = api_base.rstrip("/")
        self.identity = identity
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def close(self):
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_identity(self) -> Identity:
        if self.identity is None or not self.identity.exists():
            raise AuthRequired("No local identity available. Run `nit init` first.")
        return self.identity

    def _branch_url(self, branch: str) -> str:
        return f"{self.api_base}/agent-card/branches/{quote(branch, safe='')}"

    def _signed_request(self, method: str, url: str, body: Optional[str] = None) -> httpx.Response:
        """Send a signed request. Non-2xx and transport failures raise RemoteError."""
        identity = self._require_identity()
        path = httpx.URL(url).raw_path.decode("ascii")
        headers = signed_headers(identity, method, path, body)
        if body is not None:
            headers["Content-Type"] = "application/json"

        with NitSpan.remote_request(method, url, agent_id=headers[AGENT_ID_HEADER]) as span:
            try:
                response = self._client.request(method, url, content=body, headers=headers)
            except httpx.HTTPError as e:
                raise RemoteError(None, f"{method} {url} failed: {e}")
            record_response(span, response.status_code)

        if not response.is_success:
            raise RemoteError(response.status_code, response.text)
        return response

    # =========================================================================
    # Push
    # =========================================================================

    def push_branch(self, branch: str, card_json: str, commit_hash: str) -> PushResult:
        """
        Push one branch. HTTP and network failures come back as a failed
        PushResult carrying the server's text; a missing identity raises.
        """
        identity = self._require_identity()
        url = self._branch_url(branch)
        body = json.dumps({"card_json": card_json, "commit_hash": commit_hash})
        path = httpx.URL(url).raw_path.decode("ascii")
        headers = signed_headers(identity, "PUT", path, body)
        headers["Content-Type"] = "application/json"

        def result(success: bool, error: Optional[str] = None) -> PushResult:
            return PushResult(
                branch=branch,
                commit_hash=commit_hash,
                remote_url=self.api_base,
                success=success,
                error=error,
            )

        with NitSpan.push(branch, commit_hash, self.api_base) as span:
            try:
                response = self._client.put(url, content=body, headers=headers)
            except httpx.HTTPError as e:
                logger.warning(f"Push of {branch} failed: {e}", extra=get_trace_context())
                return result(False, str(e) or e.__class__.__name__)

            record_response(span, response.status_code)
            if not response.is_success:
                error = f"HTTP {response.status_code}: {response.text}"
                logger.warning(f"Push of {branch} rejected: {error}", extra=get_trace_context())
                return result(False, error)

        logger.info(f"Pushed {branch} @ {commit_hash[:8]} to {self.api_base}")
        return result(True)

    def push_all(self, branches: Iterable[Tuple[str, str, str]]) -> List[PushResult]:
        """Push (name, card_json, commit_hash) tuples in order, one result each."""
        return [
            self.push_branch(name, card_json, commit_hash)
            for name, card_json, commit_hash in branches
        ]

    # =========================================================================
    # Branch management
    # =========================================================================

    def list_remote_branches(self) -> List[RemoteBranch]:
        response = self._signed_request("GET", f"{self.api_base}/agent-card/branches")
        data = response.json()
        return [RemoteBranch(**b) for b in data.get("branches", [])]

    def delete_remote_branch(self, branch: str) -> bool:
        self._signed_request("DELETE", self._branch_url(branch))
        logger.info(f"Deleted remote branch {branch}")
        return True

    # =========================================================================
    # Reads
    # =========================================================================

    def _get(self, url: str, params: Optional[Dict[str, str]] = None,
             headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        with NitSpan.remote_request("GET", url, branch=(params or {}).get("branch")) as span:
            try:
                response = self._client.get(url, params=params, headers=headers)
            except httpx.HTTPError as e:
                raise RemoteError(None, f"GET {url} failed: {e}")
            record_response(span, response.status_code)
        return response

    def fetch_branch_card(self, card_url: str, branch: str = MAIN_BRANCH) -> AgentCard:
        """
        Fetch a card from an agent's card URL.

        `main` is public. Other branches go through challenge-response,
        which needs the local identity.
        """
        url = card_url.rstrip("/") + WELL_KNOWN_CARD_PATH

        with NitSpan.fetch(card_url, branch):
            if branch == MAIN_BRANCH:
                response = self._get(url)
                if not response.is_success:
                    raise RemoteError(response.status_code, response.text)
                return AgentCard.model_validate(response.json())

            params = {"branch": branch}
            response = self._get(url, params=params)
            if response.is_success:
                return AgentCard.model_validate(response.json())
            challenge = _challenge_from(response)
            if challenge is None:
                raise RemoteError(response.status_code, response.text)

            identity = self._require_identity()
            response = self._get(url, params=params, headers={
                CHALLENGE_HEADER: challenge,
                SIGNATURE_HEADER: identity.sign(challenge),
            })
            if not response.is_success:
                raise RemoteError(response.status_code, response.text)
            return AgentCard.model_validate(response.json())

    # =========================================================================
    # Login verification
    # =========================================================================

    def verify_login(self, payload: LoginPayload) -> Dict[str, Any]:
        """Ask the remote to verify a login payload. Rejections raise RemoteError verbatim."""
        url = f"{self.api_base}/agent-card/verify"
        with NitSpan.verify(payload.agent_id, payload.domain) as span:
            try:
                response = self._client.post(url, json=payload.model_dump())
            except httpx.HTTPError as e:
                raise RemoteError(None, f"POST {url} failed: {e}")
            record_response(span, response.status_code)

        if not response.is_success:
            raise RemoteError(response.status_code, response.text)
        return response.json()

    def verify_login_local(self, payload: LoginPayload, card_url: str) -> AgentCard:
        """Verify a login payload against the agent's public main card."""
        with NitSpan.verify(payload.agent_id, payload.domain):
            card = self.fetch_branch_card(card_url, MAIN_BRANCH)
            if not card.public_key:
                raise Unverified(f"Card at {card_url} has no publicKey")
            verify_login_payload(payload, card.public_key)
        return card
