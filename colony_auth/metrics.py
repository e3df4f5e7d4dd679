"""Prometheus instruments for authentication outcomes."""

from __future__ import annotations

from prometheus_client import Counter

LOGIN_OUTCOMES = Counter(
    "colony_auth_login_outcomes_total",
    "Login attempts by outcome (success or failure reason).",
    ["outcome"],
)

ACCOUNT_LOCKOUTS = Counter(
    "colony_auth_account_lockouts_total",
    "Accounts automatically locked after reaching the attempt threshold.",
)

SESSIONS_CLOSED = Counter(
    "colony_auth_sessions_closed_total",
    "Sessions closed, by cause.",
    ["cause"],
)
