"""URL-shortener workload: create new short URLs or follow existing ones.

Short codes returned by the service go into the run's shared pool so that
access iterations hit codes that really exist. A request that never gets a
response counts as a failed check, the same as an error status.
"""

import json
import logging
import string
from typing import Optional

from vuflow.transport import Response, TransportError
from vuflow.workload import VUContext, WeightedMix, workload

logger = logging.getLogger(__name__)

CREATE_PATH = "/api/urls"
ERRORS = "errors"
_ALPHABET = string.ascii_letters + string.digits


def random_string(rng, length: int = 10) -> str:
    return "".join(rng.choice(_ALPHABET) for _ in range(length))


@workload(think_time=1.0, metrics={ERRORS: "rate"})
async def create_short_url(ctx: VUContext):
    payload = json.dumps({
        "long_url": f"https://example.com/{random_string(ctx.random)}",
        "months_valid": 1,
    })
    try:
        resp = await ctx.http.post(
            CREATE_PATH, payload, {"Content-Type": "application/json"}
        )
    except TransportError as exc:
        logger.debug("create failed: %s", exc)
        resp = None

    short_code = _short_code(resp)
    ok = ctx.check(resp, {"URL creation successful": lambda r: short_code is not None})
    ctx.metrics.rate(ERRORS).add(not ok)
    if ok:
        ctx.pool.insert(short_code)


@workload(think_time=0.5, metrics={ERRORS: "rate"})
async def access_short_url(ctx: VUContext):
    short_code = ctx.pool.sample(ctx.random)
    if short_code is None:
        return await create_short_url.execute(ctx)

    try:
        resp = await ctx.http.get(f"/{short_code}")
    except TransportError as exc:
        logger.debug("access of %s failed: %s", short_code, exc)
        resp = None

    ok = ctx.check(resp, {"Redirect successful": lambda r: r is not None and r.status == 200})
    ctx.metrics.rate(ERRORS).add(not ok)


default = WeightedMix(
    [(0.3, create_short_url), (0.7, access_short_url)],
    name="shortener",
)


def _short_code(resp: Optional[Response]) -> Optional[str]:
    """The code from a successful create response, or None if it has none."""
    if resp is None or resp.status != 200:
        return None
    try:
        code = resp.json()["short_code"]
    except (ValueError, KeyError, TypeError):
        return None
    if not isinstance(code, str) or not code:
        return None
    return code
