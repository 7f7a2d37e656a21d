"""
FastAPI dependencies

Handlers receive their collaborators through Depends so tests can swap any of
them with app.dependency_overrides.
"""

import httpx
from fastapi import Depends, Request
from supabase import Client, create_client

from aktion.config import Settings, settings
from aktion.services.a2e import A2EClient
from aktion.services.credits import CreditLedger
from aktion.services.payments import StripeGateway
from aktion.services.runcomfy import RunComfyClient
from aktion.services.speech import SpeechClient

# Supabase service client (bypasses RLS)
_supabase: Client | None = None


def get_settings() -> Settings:
    return settings


def get_supabase(settings: Settings = Depends(get_settings)) -> Client:
    global _supabase
    if _supabase is None:
        _supabase = create_client(settings.supabase_url, settings.supabase_service_key)
    return _supabase


def get_http_client(request: Request) -> httpx.AsyncClient:
    """The shared client opened in the application lifespan."""
    return request.app.state.http_client


def get_ledger(supabase: Client = Depends(get_supabase)) -> CreditLedger:
    return CreditLedger(supabase)


def get_payments(settings: Settings = Depends(get_settings)) -> StripeGateway:
    return StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)


def get_a2e(
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> A2EClient:
    return A2EClient(
        http,
        settings.a2e_api_key,
        settings.a2e_base_url,
        poll_interval=settings.a2e_poll_interval_seconds,
        poll_max_attempts=settings.a2e_poll_max_attempts,
    )


def get_speech(
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> SpeechClient:
    return SpeechClient(http, settings.openai_api_key, settings.openai_base_url)


def get_runcomfy(
    settings: Settings = Depends(get_settings),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> RunComfyClient:
    return RunComfyClient(
        http,
        settings.runcomfy_api_token,
        settings.runcomfy_base_url,
        deployment_id=settings.runcomfy_deployment_id,
        poll_interval=settings.runcomfy_poll_interval_seconds,
        poll_max_attempts=settings.runcomfy_poll_max_attempts,
    )
