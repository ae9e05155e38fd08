"""
nit Reference Remote - FastAPI Application

Server half of the nit wire protocol:
- signed branch writes with trust-on-first-use on `main`
- public `main` card reads, challenge-response for other branches
- domain-bound login verification
"""

import json
import logging
import re
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Query
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from ..auth import (
    CHALLENGE_HEADER,
    SIGNATURE_HEADER,
    ChallengeIssuer,
    http_status_for,
    parse_signed_headers,
    verify_challenge_response,
    verify_login_payload,
    verify_signed_request,
)
from ..config import ServerConfig
from ..errors import NitError, MalformedInput, NotFound, Unverified
from ..identity import derive_agent_id, parse_public_key_field
from ..models import AgentCard, LoginPayload
from ..refs import MAIN_BRANCH, validate_branch_name
from .storage import ServerStorage

logger = logging.getLogger("nit.server")


# =============================================================================
# Pydantic Models
# =============================================================================

class PushRequest(BaseModel):
    """Body of PUT /agent-card/branches/{branch}."""
    card_json: str
    commit_hash: str


def _http_error(error: NitError) -> HTTPException:
    return HTTPException(status_code=http_status_for(error), detail=error.reason)


def _raw_path(request: Request) -> str:
    """The path exactly as the client sent (and signed) it."""
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1")
    return request.url.path


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    config: Optional[ServerConfig] = None,
    storage: Optional[ServerStorage] = None,
    issuer: Optional[ChallengeIssuer] = None,
) -> FastAPI:
    """Create FastAPI application."""
    config = config or ServerConfig()
    storage = storage or ServerStorage(config.db_path)
    issuer = issuer or ChallengeIssuer.from_key_file(config.key_path)
    card_host_re = re.compile(
        r"^agent-([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\."
        + re.escape(config.card_host)
        + r"(:\d+)?$"
    )

    app = FastAPI(
        title="nit remote",
        description="Agent card branch hosting",
        version="0.1.0",
    )

    async def authenticate(request: Request, body: bytes) -> str:
        """Verify signature headers against the pinned key. Returns the agent id."""
        try:
            agent_id, timestamp, signature = parse_signed_headers(request.headers)
            public_key = storage.get_agent_key(agent_id)
            if public_key is None:
                raise NotFound(f"Unknown agent {agent_id}. Push main first.")
            verify_signed_request(
                request.method, _raw_path(request), agent_id, timestamp, signature,
                body, public_key,
            )
        except NitError as e:
            logger.info(f"Rejected {request.method} {request.url.path}: {e.reason}")
            raise _http_error(e)
        return agent_id

    def agent_from_host(request: Request) -> str:
        host = request.headers.get("host", "")
        match = card_host_re.match(host)
        if not match:
            raise HTTPException(status_code=404, detail=f"No agent card served at {host}")
        return match.group(1)

    # =========================================================================
    # Health
    # =========================================================================

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    # =========================================================================
    # Branch writes
    # =========================================================================

    @app.put("/agent-card/branches/{branch}")
    async def push_branch(branch: str, request: Request):
        """
        Store a branch card.

        The first push of main pins the card's publicKey (trust on first
        use). Every other write needs a pinned key.
        """
        body = await request.body()
        try:
            validate_branch_name(branch)
            push = PushRequest.model_validate_json(body)
            card = AgentCard.from_json(push.card_json)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid push body: {e}")
        except NitError as e:
            raise _http_error(e)

        try:
            agent_id, timestamp, signature = parse_signed_headers(request.headers)
            pinned = storage.get_agent_key(agent_id)

            if pinned is None:
                if branch != MAIN_BRANCH:
                    raise NotFound(f"Unknown agent {agent_id}. Push main before other branches.")
                if not card.public_key:
                    raise MalformedInput("First push of main must carry a publicKey")
                parse_public_key_field(card.public_key)
                if derive_agent_id(card.public_key) != agent_id:
                    raise Unverified(f"publicKey does not derive to agent {agent_id}")
                verify_signed_request(
                    "PUT", _raw_path(request), agent_id, timestamp, signature, body, card.public_key,
                )
                if not storage.pin_agent_key(agent_id, card.public_key):
                    pinned = storage.get_agent_key(agent_id)
                    if pinned != card.public_key:
                        raise Unverified(f"Agent {agent_id} was claimed by another key")
            else:
                verify_signed_request(
                    "PUT", _raw_path(request), agent_id, timestamp, signature, body, pinned,
                )
                if branch == MAIN_BRANCH and card.public_key != pinned:
                    raise Unverified("publicKey on main must match the pinned key")
        except NitError as e:
            logger.info(f"Rejected push of {branch}: {e.reason}")
            raise _http_error(e)

        storage.put_branch(agent_id, branch, push.card_json, push.commit_hash)
        return {"success": True, "branch": branch, "commit_hash": push.commit_hash}

    @app.get("/agent-card/branches")
    async def list_branches(request: Request):
        """List an agent's pushed branches."""
        agent_id = await authenticate(request, await request.body())
        return {"branches": storage.list_branches(agent_id)}

    @app.delete("/agent-card/branches/{branch}")
    async def delete_branch(branch: str, request: Request):
        """Delete a pushed branch. main cannot be deleted."""
        agent_id = await authenticate(request, await request.body())
        if branch == MAIN_BRANCH:
            raise HTTPException(status_code=400, detail="Cannot delete the main branch")
        if not storage.delete_branch(agent_id, branch):
            raise HTTPException(status_code=404, detail=f'Branch "{branch}" not found')
        return {"success": True, "branch": branch}

    # =========================================================================
    # Card reads
    # =========================================================================

    @app.get("/.well-known/agent-card.json")
    async def get_card(request: Request, branch: str = Query(default=MAIN_BRANCH)):
        """
        Serve an agent card from agent-<id>.<card host>.

        Non-main branches answer 401 with a challenge until the request
        carries a valid challenge and the agent's signature over it.
        """
        agent_id = agent_from_host(request)

        if branch != MAIN_BRANCH:
            challenge = request.headers.get(CHALLENGE_HEADER)
            signature = request.headers.get(SIGNATURE_HEADER)
            if not challenge or not signature:
                token, expires = issuer.issue(agent_id, branch)
                return JSONResponse(status_code=401, content={"challenge": token, "expires": expires})

            try:
                issuer.verify(challenge, agent_id, branch)
                public_key = storage.get_agent_key(agent_id)
                if public_key is None:
                    raise NotFound(f"Unknown agent {agent_id}")
                verify_challenge_response(challenge, signature, public_key)
            except NitError as e:
                logger.info(f"Rejected challenge for {agent_id}/{branch}: {e.reason}")
                raise _http_error(e)

        stored = storage.get_branch(agent_id, branch)
        if stored is None:
            raise HTTPException(status_code=404, detail=f'Branch "{branch}" not found')
        return Response(content=stored["card_json"], media_type="application/json")

    # =========================================================================
    # Login verification
    # =========================================================================

    @app.post("/agent-card/verify")
    async def verify_login(request: Request):
        """Verify a domain-bound login signature against the pinned key."""
        try:
            payload = LoginPayload.model_validate_json(await request.body())
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid login payload: {e}")

        try:
            public_key = storage.get_agent_key(payload.agent_id)
            if public_key is None:
                raise NotFound(f"Unknown agent {payload.agent_id}")
            verify_login_payload(payload, public_key)
        except NitError as e:
            logger.info(f"Login for {payload.agent_id} on {payload.domain} rejected: {e.reason}")
            raise _http_error(e)

        stored = storage.get_branch(payload.agent_id, MAIN_BRANCH)
        card = json.loads(stored["card_json"]) if stored else None
        return {
            "verified": True,
            "agent_id": payload.agent_id,
            "domain": payload.domain,
            "card": card,
        }

    return app


def run_server(config: Optional[ServerConfig] = None):
    """Run the reference remote."""
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    config = config or ServerConfig()
    logger.info(f"Serving agent cards for *.{config.card_host} on {config.host}:{config.port}")
    uvicorn.run(create_app(config), host=config.host, port=config.port)
