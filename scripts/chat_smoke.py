#!/usr/bin/env python
"""Manual connectivity check: send one prompt through a running gateway."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from tutor_gateway.client import SecureChatClient  # noqa: E402
from tutor_gateway.settings import settings  # noqa: E402


def _prompt(label: str, *, default: str | None = None) -> str:
    suffix = f" [{default}]" if default else ""
    text = input(f"{label}{suffix}: ").strip()
    if not text and default is not None:
        return default
    if not text:
        raise SystemExit(f"{label} must not be empty")
    return text


async def main() -> None:
    base_url = _prompt("Gateway base URL", default=settings.gateway_base_url)
    message = _prompt("Test message", default="Hi there! Can you help me with fractions?")

    async with SecureChatClient(base_url, timeout=settings.client_timeout_seconds) as client:
        print(f"POST {base_url}/api/chat ...")
        outcome = await client.request_completion([{"role": "user", "content": message}])
        print(f"failure: {outcome.failure.value if outcome.failure else '-'}")
        print(outcome.text)

        stats = await client.get_usage_stats()
        if stats is not None:
            print(json.dumps(stats, indent=2))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\ncancelled")
