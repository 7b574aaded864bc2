"""Scheduled per-user automation run.

:class:`WorkflowExecutor` performs one *tick* for one user.  Steps run
strictly in order, each carrying the user's **current** credential (re-read
from the :class:`~kgrelay.storage.credentials.CredentialStore` at the start
of the tick) as a ``Cookie: token=…; userid=…`` header:

1. **Profile** — ``GET /user/detail``.  No ``data.nickname`` means the token
   has expired: log and end the tick.
2. **Listen reward** — ``GET /youth/listen/song``.  Outcome is logged only.
3. **Bonus claims** — up to ``bonus_claim_attempts`` × ``GET /youth/vip``:

   * ``status == 1`` → claimed; pause via :class:`BackoffPolicy` unless this
     was the last iteration.
   * ``error_code == quota_exhausted_code`` → daily quota used up; stop.
   * anything else → stop.

4. **VIP status** — ``GET /user/vip/detail``; log the expiry if present.

:meth:`WorkflowExecutor.run_tick` never raises.  Any exception is logged and
ends the tick so the scheduler keeps firing future ticks.

The backoff pause is the only long suspension point.  It holds no lock, so
other users' ticks and inbound requests proceed while one user waits.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from kgrelay.core import events
from kgrelay.core.exceptions import CredentialNotFoundError, WorkflowStepError
from kgrelay.core.logging_config import TICK_ID_CTX
from kgrelay.core.settings import Settings
from kgrelay.storage.credentials import CredentialStore
from kgrelay.upstream.http_client import UpstreamClient

__all__ = [
    "PROFILE_PATH",
    "LISTEN_PATH",
    "BONUS_PATH",
    "VIP_DETAIL_PATH",
    "BackoffPolicy",
    "TickResult",
    "WorkflowExecutor",
]

logger = logging.getLogger(__name__)

PROFILE_PATH = "/user/detail"
LISTEN_PATH = "/youth/listen/song"
BONUS_PATH = "/youth/vip"
VIP_DETAIL_PATH = "/user/vip/detail"


# ---------------------------------------------------------------------------
# Backoff policy
# ---------------------------------------------------------------------------


@dataclass
class BackoffPolicy:
    """Randomised pause between successful bonus claims.

    Delays are drawn uniformly from ``[min_delay, max_delay)``.  Both the
    random source and the sleep coroutine are injectable so tests can run
    deterministically and without real waiting.

    Attributes:
        min_delay: Lower bound in seconds (inclusive).
        max_delay: Upper bound in seconds (exclusive unless equal to min).
        rng: Random source.
        sleep: Coroutine used to suspend the ticking task.
    """

    min_delay: float = 30.0
    max_delay: float = 40.0
    rng: random.Random = field(default_factory=random.Random)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(min_delay=settings.bonus_delay_min, max_delay=settings.bonus_delay_max)

    def next_delay(self) -> float:
        return self.min_delay + self.rng.random() * (self.max_delay - self.min_delay)

    async def pause(self) -> float:
        """Sleep for :meth:`next_delay` seconds and return the delay used."""
        delay = self.next_delay()
        logger.info("Waiting %.1f s before the next bonus claim…", delay)
        await self.sleep(delay)
        return delay


# ---------------------------------------------------------------------------
# Tick result
# ---------------------------------------------------------------------------


@dataclass
class TickResult:
    """Observable outcome of one tick, mostly for logs and tests.

    Attributes:
        user_id: User the tick ran for.
        nickname: Profile nickname, ``None`` if the profile step failed.
        listen_ok: Whether the listen reward reported success.
        bonus_calls: Number of bonus-claim calls made.
        bonus_claimed: Number of those calls that succeeded.
        quota_exhausted: ``True`` if the loop stopped on the quota code.
        vip_end_time: Expiry reported by the final status call, if any.
        aborted: Reason the tick ended early (``"no_credential"``,
            ``"token_expired"``, ``"error"``), ``None`` when it completed.
        calls: Total downstream calls made.
    """

    user_id: str
    nickname: str | None = None
    listen_ok: bool = False
    bonus_calls: int = 0
    bonus_claimed: int = 0
    quota_exhausted: bool = False
    vip_end_time: str | None = None
    aborted: str | None = None
    calls: int = 0


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class WorkflowExecutor:
    """Runs the automation workflow for one user per call.

    Args:
        store: Credential source, read at the start of every tick.
        client: Shared downstream client.
        settings: Provides the base URL, attempt count and quota code.
        backoff: Pause policy between bonus claims.  Built from *settings*
            when omitted.
    """

    def __init__(
        self,
        store: CredentialStore,
        client: UpstreamClient,
        settings: Settings,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._settings = settings
        self._backoff = backoff or BackoffPolicy.from_settings(settings)

    async def run_tick(self, user_id: str) -> TickResult:
        """Execute one tick for *user_id*.  Never raises."""
        token = TICK_ID_CTX.set(f"{user_id}/{uuid.uuid4().hex[:8]}")
        result = TickResult(user_id=user_id)
        try:
            logger.info("Tick started for user %r", user_id, extra={"event": events.TICK_START})
            try:
                record = self._store.get(user_id)
            except CredentialNotFoundError:
                result.aborted = "no_credential"
                logger.warning(
                    "No credential for user %r — skipping tick.",
                    user_id,
                    extra={"event": events.TICK_SKIPPED},
                )
                return result

            headers = {"Cookie": f"token={record.token}; userid={user_id}"}
            await self._run_steps(result, headers)
        except Exception:
            result.aborted = "error"
            logger.exception(
                "Tick for user %r failed.", user_id, extra={"event": events.TICK_ERROR}
            )
        finally:
            TICK_ID_CTX.reset(token)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run_steps(self, result: TickResult, headers: dict[str, str]) -> None:
        profile = await self._call(result, PROFILE_PATH, headers)
        nickname = _dig(profile, "data", "nickname")
        if not nickname:
            result.aborted = "token_expired"
            logger.info(
                "Token expired for user %r.",
                result.user_id,
                extra={"event": events.TICK_TOKEN_EXPIRED},
            )
            return
        result.nickname = str(nickname)
        logger.info("User %s starting daily claims.", nickname)

        listen = await self._call(result, LISTEN_PATH, headers)
        result.listen_ok = _dig(listen, "status") == 1
        logger.info("Listen reward: %s", "success" if result.listen_ok else "failed/already claimed")

        await self._claim_bonuses(result, headers)

        vip = await self._call(result, VIP_DETAIL_PATH, headers)
        if _dig(vip, "status") == 1:
            end_time = _dig(vip, "data", "busi_vip", 0, "vip_end_time")
            if end_time:
                result.vip_end_time = str(end_time)
                logger.info("VIP expires at %s", end_time)

        logger.info(
            "Tick complete for user %r — %d/%d bonus claim(s) succeeded.",
            result.user_id,
            result.bonus_claimed,
            result.bonus_calls,
            extra={"event": events.TICK_COMPLETE},
        )

    async def _claim_bonuses(self, result: TickResult, headers: dict[str, str]) -> None:
        attempts = self._settings.bonus_claim_attempts
        for i in range(1, attempts + 1):
            claim = await self._call(result, BONUS_PATH, headers)
            result.bonus_calls += 1

            if _dig(claim, "status") == 1:
                result.bonus_claimed += 1
                logger.info(
                    "Bonus claim %d succeeded.", i, extra={"event": events.TICK_BONUS_CLAIMED}
                )
                if i != attempts:
                    await self._backoff.pause()
            elif _dig(claim, "error_code") == self._settings.quota_exhausted_code:
                result.quota_exhausted = True
                logger.info(
                    "Daily bonus quota used up.", extra={"event": events.TICK_BONUS_EXHAUSTED}
                )
                break
            else:
                logger.info("Bonus claim %d failed.", i, extra={"event": events.TICK_BONUS_FAILED})
                break

    async def _call(self, result: TickResult, path: str, headers: dict[str, str]) -> dict[str, Any]:
        """GET ``workflow_base_url + path`` once and return the JSON object body."""
        result.calls += 1
        response = await self._client.request(
            "GET",
            f"{self._settings.workflow_base_url}{path}",
            headers=headers,
            max_attempts=1,
        )
        if not isinstance(response.body, dict):
            raise WorkflowStepError(path, f"expected a JSON object, got HTTP {response.status}")
        return response.body


def _dig(obj: Any, *keys: str | int) -> Any:
    """Follow *keys* through nested dicts/lists, returning ``None`` on a miss."""
    for key in keys:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
        elif not isinstance(obj, dict):
            return None
        obj = obj[key] if isinstance(key, int) else obj.get(key)
    return obj
