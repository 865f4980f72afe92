#!/usr/bin/env python3
"""Provision the broker connections and optionally bind the provider webhook secret."""

from __future__ import annotations

import argparse
import asyncio
import sys

from deepqueue.core.config import get_settings
from deepqueue.core.errors import DeepQueueError
from deepqueue.services.connections import build_connection_provisioner
from deepqueue.services.kv_store import build_kv_store


def render_next_steps(*, queue_url: str, webhook_url: str, source_updated: bool) -> str:
    lines = [
        "Hookdeck connections ready",
        f"  queue source url:   {queue_url}",
        f"  webhook source url: {webhook_url}",
        "",
    ]
    if source_updated:
        lines.append("Webhook source verification bound to the OpenAI signing secret.")
    else:
        lines.extend(
            [
                "Next: create an OpenAI project webhook",
                f"  url:    {webhook_url}",
                "  events: all response.* events",
                "Then re-run with --openai-webhook-secret to bind its signing secret.",
            ]
        )
    return "\n".join(lines)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    kv_store = build_kv_store(settings)
    if settings.kv_backend == "memory":
        print("warning: DQ_KV_BACKEND=memory; cached connections will not outlive this script", file=sys.stderr)
    provisioner = build_connection_provisioner(settings, kv_store)
    try:
        connections = await provisioner.ensure_connections(
            args.hookdeck_api_key,
            args.openai_api_key,
            args.app_url,
            signing_secret=args.hookdeck_signing_secret,
        )
        source_updated = False
        if args.openai_webhook_secret:
            await provisioner.update_webhook_source(
                connections.webhook.source_id,
                args.openai_webhook_secret.strip(),
                args.hookdeck_api_key,
            )
            source_updated = True
    except DeepQueueError as exc:
        print(f"setup failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await kv_store.close()

    print(
        render_next_steps(
            queue_url=connections.queue.source_url,
            webhook_url=connections.webhook.source_url,
            source_updated=source_updated,
        )
    )
    return 0


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Provision Hookdeck connections for local development.")
    parser.add_argument("--hookdeck-api-key", default=settings.hookdeck_api_key, required=not settings.hookdeck_api_key)
    parser.add_argument("--openai-api-key", default=settings.openai_api_key, required=not settings.openai_api_key)
    parser.add_argument("--app-url", default=settings.app_url, help="Public base url of this service")
    parser.add_argument(
        "--hookdeck-signing-secret",
        default=settings.hookdeck_signing_secret,
        help="Secret the broker signs deliveries to this service with",
    )
    parser.add_argument("--openai-webhook-secret", help="OpenAI project webhook signing secret")
    args = parser.parse_args()
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
