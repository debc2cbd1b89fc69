from __future__ import annotations

import hashlib
import json

from plangate.core.providers.base import ProviderRequest


def fingerprint(provider_id: str, request: ProviderRequest) -> str:
    """Stable digest of everything that determines a provider's answer."""
    payload = {
        "provider_id": provider_id.lower(),
        "model": request.model,
        "system_prompt": request.system_prompt,
        "prompt": request.prompt,
        "max_tokens": int(request.max_tokens),
        "temperature": float(request.temperature),
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
