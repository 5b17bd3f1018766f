"""
REST / HTTP API server for Lockstake nodes.

Built on ``aiohttp``.

Endpoints
---------
GET  /health                      Liveness + ledger counters
GET  /status                      Pool summary and admin settings
GET  /tiers                       Lockups and current multipliers
GET  /stake/{stake_id}            One stake record
GET  /stakes/{owner}              Owner's stakes, accrued, claimed, claimable
GET  /balance/{asset}/{address}   Asset balance
POST /tx/stake                    {"tier", "amount"}
POST /tx/restake                  {"stake_id", "tier"}
POST /tx/withdraw                 {"stake_id"}
POST /tx/claim                    {"amount"}
POST /tx/deposit                  {"amount"}
POST /admin/multipliers           {"tiers": [...], "multipliers": [...]}
POST /admin/staking               {"enabled": bool}
POST /admin/reward_asset          {"symbol": str | null}
POST /admin/sweep                 {"amount"}

Every POST body is a signed envelope (see ``lockstake_core.wallet``).
The payload must name the operation in ``"op"`` and carry a nonce
greater than the last one accepted from that address.  The caller
identity is the address derived from the envelope's public key.

Amounts may be sent as JSON integers or decimal strings.

Ledger failures map to HTTP statuses by kind:
    InputError 400 · AuthError 403 · StateError 409 ·
    TransferError 422 · InvariantViolation 500
and are returned as ``{"error": <kind>, "message": ...}``.

Security
--------
- Optional API key on POST endpoints via ``X-API-Key`` header only.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``, default 1 MiB).

Usage:
    api = APIServer(node, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from lockstake_core.errors import (
    AuthError,
    InputError,
    InvariantViolation,
    StakingError,
    StateError,
    TransferError,
)
from lockstake_core.wallet import InvalidSignature, verify_envelope

if TYPE_CHECKING:
    from lockstake_core.config import APIConfig

logger = logging.getLogger("lockstake_api")

ERROR_STATUS: tuple[tuple[type, int], ...] = (
    (InputError, 400),
    (AuthError, 403),
    (StateError, 409),
    (TransferError, 422),
    (InvariantViolation, 500),
)


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types."""
    return json.dumps(obj, default=str)


def error_status(exc: StakingError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to int, rejecting floats, bools and junk."""
    if isinstance(value, bool) or isinstance(value, float):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            pass
    raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _require(payload: dict, name: str) -> Any:
    if name not in payload:
        raise web.HTTPBadRequest(text=f"{name} required")
    return payload[name]


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> [tokens, last_refill_timestamp]
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        bucket[0] = min(float(self._rpm), bucket[0] + (now - bucket[1]) * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


class _NonceTracker:
    """Highest accepted nonce per address, written through to *store* if given."""

    def __init__(self, store: Any = None) -> None:
        self._store = store
        self._last: dict[str, int] = store.load_nonces() if store is not None else {}

    def accept(self, address: str, nonce: int) -> bool:
        if nonce <= self._last.get(address, 0):
            return False
        self._last[address] = nonce
        if self._store is not None:
            self._store.save_nonce(address, nonce)
        return True


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        if not bucket.allow(request.remote or "unknown"):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """Require ``X-API-Key`` on POST, compared in constant time."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method == "POST":
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """Adds CORS headers for explicitly listed origins; ``*`` is ignored."""
    allowed = set(origins)
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)
        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


def build_middlewares(cfg: APIConfig | None) -> list:
    if cfg is None:
        return []
    middlewares: list = []
    if cfg.rate_limit_rpm > 0:
        middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
    if cfg.cors_origins:
        middlewares.append(_make_cors_middleware(cfg.cors_origins))
    if cfg.api_key:
        middlewares.append(_make_api_key_middleware(cfg.api_key))
    return middlewares


class APIServer:
    """Thin aiohttp wrapper around a running LockstakeNode.

    *node* must expose ``node_id``, ``ledger`` (a ``StakeLedger``) and
    ``assets`` (symbol → ``FungibleAsset``).  If it also has a ``store``
    (a ``LedgerStore``), accepted request nonces are persisted there and
    survive a restart.
    """

    def __init__(
        self,
        node: Any,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.node = node
        self.host = host
        self.port = port
        self._api_config = api_config
        self._nonces = _NonceTracker(getattr(node, "store", None))
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        max_body = self._api_config.max_body_bytes if self._api_config else 1_048_576
        app = web.Application(
            middlewares=build_middlewares(self._api_config),
            client_max_size=max_body,
        )
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/tiers", self._tiers)
        app.router.add_get("/stake/{stake_id}", self._stake_info)
        app.router.add_get("/stakes/{owner}", self._owner_stakes)
        app.router.add_get("/balance/{asset}/{address}", self._balance)
        # User operations
        app.router.add_post("/tx/stake", self._submit_stake)
        app.router.add_post("/tx/restake", self._submit_restake)
        app.router.add_post("/tx/withdraw", self._submit_withdraw)
        app.router.add_post("/tx/claim", self._submit_claim)
        app.router.add_post("/tx/deposit", self._submit_deposit)
        # Admin operations (gated by the authorization registry)
        app.router.add_post("/admin/multipliers", self._admin_multipliers)
        app.router.add_post("/admin/staking", self._admin_staking)
        app.router.add_post("/admin/reward_asset", self._admin_reward_asset)
        app.router.add_post("/admin/sweep", self._admin_sweep)

    # ── helpers ──────────────────────────────────────────────────

    @property
    def ledger(self):
        return self.node.ledger

    async def _authenticate(self, request: web.Request, op: str) -> tuple[str, dict]:
        """Verify the signed envelope.  Returns ``(caller, payload)``."""
        try:
            body = await request.json()
        except ValueError as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        try:
            caller, payload = verify_envelope(body)
        except InvalidSignature as exc:
            raise web.HTTPUnauthorized(text=str(exc)) from exc
        if payload.get("op") != op:
            raise web.HTTPBadRequest(text=f"Payload op must be {op!r}")
        nonce = _safe_int(payload.get("nonce"), "nonce")
        if not self._nonces.accept(caller, nonce):
            raise web.HTTPUnauthorized(text="Stale or replayed nonce")
        return caller, payload

    @staticmethod
    def _failure(exc: StakingError) -> web.Response:
        status = error_status(exc)
        if status >= 500:
            logger.error(f"{exc.kind}: {exc}")
        return web.json_response(exc.to_dict(), status=status, dumps=_json_dumps)

    @staticmethod
    def _ok(body: dict) -> web.Response:
        return web.json_response(body, dumps=_json_dumps)

    # ── query handlers ───────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        return self._ok({
            "ok": True,
            "node_id": self.node.node_id,
            "last_stake_id": self.ledger.last_stake_id,
            "staking_permitted": self.ledger.config.staking_permitted,
        })

    async def _status(self, _request: web.Request) -> web.Response:
        body = self.ledger.pool_summary()
        body["config"] = self.ledger.config.to_dict()
        body["node_id"] = self.node.node_id
        return self._ok(body)

    async def _tiers(self, _request: web.Request) -> web.Response:
        return self._ok({"tiers": self.ledger.config.tier_info()})

    async def _stake_info(self, request: web.Request) -> web.Response:
        stake_id = _safe_int(request.match_info["stake_id"], "stake_id")
        record = self.ledger.get_stake(stake_id)
        if record is None:
            raise web.HTTPNotFound(text=f"Stake {stake_id} not found")
        now = self.ledger.now()
        body = record.to_dict(self.ledger.config.lockup_seconds(record.tier), now)
        body["accrued"] = self.ledger.accrued_for(record, now)
        return self._ok(body)

    async def _owner_stakes(self, request: web.Request) -> web.Response:
        try:
            return self._ok(self.ledger.summary(request.match_info["owner"]))
        except StakingError as exc:
            return self._failure(exc)

    async def _balance(self, request: web.Request) -> web.Response:
        symbol = request.match_info["asset"]
        asset = self.node.assets.get(symbol)
        if asset is None:
            raise web.HTTPNotFound(text=f"Unknown asset {symbol}")
        address = request.match_info["address"]
        return self._ok({"asset": symbol, "address": address, "balance": asset.balance_of(address)})

    # ── user operations ──────────────────────────────────────────

    async def _submit_stake(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "stake")
        tier = _safe_int(_require(payload, "tier"), "tier")
        amount = _safe_int(_require(payload, "amount"), "amount")
        try:
            stake_id = self.ledger.stake(caller, tier, amount)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "staked", "stake_id": stake_id, "amount": amount, "tier": tier})

    async def _submit_restake(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "restake")
        stake_id = _safe_int(_require(payload, "stake_id"), "stake_id")
        tier = _safe_int(_require(payload, "tier"), "tier")
        try:
            new_id = self.ledger.restake(caller, stake_id, tier)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "restaked", "stake_id": stake_id, "new_stake_id": new_id})

    async def _submit_withdraw(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "withdraw")
        stake_id = _safe_int(_require(payload, "stake_id"), "stake_id")
        try:
            amount = self.ledger.withdraw(caller, stake_id)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "withdrawn", "stake_id": stake_id, "amount": amount})

    async def _submit_claim(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "claim")
        amount = _safe_int(_require(payload, "amount"), "amount")
        try:
            self.ledger.claim(caller, amount)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "claimed", "amount": amount})

    async def _submit_deposit(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "deposit")
        amount = _safe_int(_require(payload, "amount"), "amount")
        try:
            self.ledger.deposit(caller, amount)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "received", "amount": amount})

    # ── admin operations ─────────────────────────────────────────

    async def _admin_multipliers(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "set_multipliers")
        tiers = _require(payload, "tiers")
        mults = _require(payload, "multipliers")
        if not isinstance(tiers, list) or not isinstance(mults, list):
            raise web.HTTPBadRequest(text="tiers and multipliers must be lists")
        tiers = [_safe_int(t, "tier") for t in tiers]
        mults = [_safe_int(m, "multiplier") for m in mults]
        try:
            self.ledger.config.set_multipliers(caller, tiers, mults)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "updated", "tiers": self.ledger.config.tier_info()})

    async def _admin_staking(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "set_staking_permitted")
        enabled = _require(payload, "enabled")
        if not isinstance(enabled, bool):
            raise web.HTTPBadRequest(text="enabled must be a boolean")
        try:
            self.ledger.config.set_staking_permitted(caller, enabled)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "updated", "staking_permitted": enabled})

    async def _admin_reward_asset(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "set_reward_asset")
        symbol = _require(payload, "symbol")
        asset = None
        if symbol is not None:
            asset = self.node.assets.get(symbol)
            if asset is None:
                raise web.HTTPBadRequest(text=f"Unknown asset {symbol}")
        try:
            self.ledger.config.set_reward_asset(caller, asset)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "updated", "reward_asset": symbol})

    async def _admin_sweep(self, request: web.Request) -> web.Response:
        caller, payload = await self._authenticate(request, "sweep")
        amount = _safe_int(_require(payload, "amount"), "amount")
        try:
            self.ledger.config.sweep(caller, amount)
        except StakingError as exc:
            return self._failure(exc)
        return self._ok({"status": "swept", "amount": amount})
