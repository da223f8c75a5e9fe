import logging as log
from dataclasses import dataclass, replace
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from push import variables
from push.auth import Authorizer, TokenAuthorizer, bearer_credential
from push.delivery_log import DeliveryLog
from push.errors import Forbidden, KeyUnavailable
from push.keys import KeyProvider, init_key_provider
from push.notifier import Notifier
from push.payload import build_payload
from push.storage import build_storage
from push.subscription import (
    SubscriptionStore,
    is_valid_endpoint,
    normalize_subscription,
    normalize_topics,
)
from push.transport import WebPushTransport

log.basicConfig(
    level=log.DEBUG,
    format="! [%(levelname)s] %(message)s"
)

app = FastAPI(
    docs_url=None,
    redoc_url=None,
    openapi_url=None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass
class Services:
    store: SubscriptionStore
    delivery_log: DeliveryLog
    keys: KeyProvider
    authorizer: Authorizer
    notifier: Notifier


class BroadcastRequest(BaseModel):
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    url: Optional[str] = None
    icon: Optional[str] = None
    topic: str = variables.DEFAULT_TOPIC


def services(req: Request) -> Services:
    return req.app.state.services


async def _caller(svc: Services, authorization: Optional[str]):
    credential = bearer_credential(authorization)
    if not credential:
        raise HTTPException(status_code=401, detail="Unauthorized")
    caller = await svc.authorizer.resolve(credential)
    if caller is None or not caller.privileged:
        raise HTTPException(status_code=403, detail="Admin access required")
    return credential


@app.get("/vapid_public_key")
async def vapid_key(req: Request):
    try:
        key = await services(req).keys.get_public_key()
    except KeyUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"key": key}


async def _owner(svc: Services, authorization: Optional[str]) -> Optional[str]:
    credential = bearer_credential(authorization)
    if not credential:
        return None
    caller = await svc.authorizer.resolve(credential)
    return caller.identity if caller else None


@app.post("/subscribe")
async def subscribe(req: Request, authorization: Optional[str] = Header(default=None)):
    svc = services(req)
    data = await req.json()
    if not isinstance(data, dict):
        return {"ok": False, "msg": "Invalid subscription data"}

    raw = data.get("subscription")
    if not isinstance(raw, dict):
        return {"ok": False, "msg": "Invalid subscription data"}

    topics = data.get("topics")
    raw = {**raw, "locale": data.get("locale")}
    sub = normalize_subscription(raw)
    if not sub or not is_valid_endpoint(sub.endpoint):
        return {"ok": False, "msg": "Invalid subscription data"}

    topics = variables.DEFAULT_TOPICS if topics is None else normalize_topics(topics)
    # owner only ever comes from a verified credential
    sub = replace(sub, topics=topics, owner=await _owner(svc, authorization))

    old_endpoint = data.get("old_endpoint")
    if isinstance(old_endpoint, str) and old_endpoint and old_endpoint != sub.endpoint:
        await svc.store.move(old_endpoint, sub)
        return {"ok": True, "created": False, "msg": "Subscription moved"}

    created = await svc.store.upsert(sub)

    return {
        "ok": True,
        "created": created,
        "msg": "Subscribed to notifications" if created else "Subscription updated",
    }


@app.post("/unsubscribe")
async def unsubscribe(req: Request):
    data = await req.json()
    if not isinstance(data, dict):
        return {"ok": False, "msg": "Invalid subscription data"}

    raw = data.get("subscription")
    endpoint = raw.get("endpoint") if isinstance(raw, dict) else data.get("endpoint")
    if not endpoint or not isinstance(endpoint, str):
        return {"ok": False, "msg": "Invalid subscription data"}

    removed = await services(req).store.delete(endpoint)

    # unsubscribing an unknown endpoint is still a success
    return {
        "ok": True,
        "removed": removed,
        "msg": "Subscription removed" if removed else "Subscription not found",
    }


@app.post("/notify")
async def notify(
    body: BroadcastRequest,
    req: Request,
    authorization: Optional[str] = Header(default=None),
) -> dict[str, Any]:
    credential = bearer_credential(authorization)
    if not credential:
        raise HTTPException(status_code=401, detail="Unauthorized")

    payload = build_payload(body.title, body.body, url=body.url, icon=body.icon, topic=body.topic)

    try:
        result = await services(req).notifier.broadcast(payload, body.topic, credential)
    except Forbidden as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except KeyUnavailable as exc:
        log.error("broadcast aborted: %s", exc)
        raise HTTPException(status_code=503, detail="VAPID keys not configured")

    return result.to_dict()


@app.get("/count")
async def get_count(req: Request):
    return await services(req).store.count()


@app.get("/history")
async def get_history(
    req: Request,
    limit: int = Query(default=20, ge=1, le=200),
    authorization: Optional[str] = Header(default=None),
):
    svc = services(req)
    await _caller(svc, authorization)
    entries = await svc.delivery_log.recent(limit)
    return {"items": [entry.to_dict() for entry in entries]}


async def build_services() -> Services:
    store, delivery_log = await build_storage(offline=variables.OFFLINE)
    keys = init_key_provider()
    try:
        await keys.get_keys()
    except KeyUnavailable as exc:
        log.warning(f"VAPID keys not ready, Web Push disabled: {exc}")

    authorizer = TokenAuthorizer.from_env()
    notifier = Notifier(
        store=store,
        keys=keys,
        transport=WebPushTransport(),
        authorizer=authorizer,
        delivery_log=delivery_log,
    )
    return Services(store=store, delivery_log=delivery_log, keys=keys, authorizer=authorizer, notifier=notifier)


@app.on_event("startup")
async def start():
    if getattr(app.state, "services", None) is None:
        app.state.services = await build_services()
    log.info("push service started")
