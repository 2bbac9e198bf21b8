"""Subscription loader for subscription.yaml."""

from __future__ import annotations

from pathlib import Path

import yaml

from ocl_sync.subscription.models import SubscriptionRecord


def load_subscription(path: str) -> SubscriptionRecord:
    subscription_path = Path(path)
    if not subscription_path.exists():
        raise FileNotFoundError(f"Subscription file not found: {subscription_path}")
    with subscription_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Subscription file must contain a mapping: {subscription_path}")
    return SubscriptionRecord.from_yaml(data.get("subscription", data))
