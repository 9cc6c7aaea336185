import sys
import pathlib
import pytest
import httpx
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from asgi_lifespan import LifespanManager

sys.path.append(str(pathlib.Path(__file__).parent.parent/'src'))
sys.path.append(str(pathlib.Path(__file__).parent))

from pix import MerchantIdentity
from ledger import PaymentLedger
from settings import settings, mercadopago_settings
from main import app


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta):
        self.now += delta


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2026, 10, 18, 12, 0, 0))


@pytest.fixture
def merchant() -> MerchantIdentity:
    return MerchantIdentity(key='pix@example.com', name='PIX PAYMENT', city='BRASILIA')


@pytest.fixture
def ledger(merchant: MerchantIdentity, clock: Clock) -> PaymentLedger:
    return PaymentLedger(
        merchant=merchant,
        min_amount=Decimal('0.01'),
        max_amount=Decimal('999999.99'),
        clock=clock
    )


@pytest.fixture(autouse=True)
def quiet_worker(monkeypatch: pytest.MonkeyPatch):
    # Фоновые циклы не должны вмешиваться в тесты, вызываем их шаги напрямую
    monkeypatch.setattr(settings, 'sweep_loop_sleep_duration', 3600.0)
    monkeypatch.setattr(settings, 'reconciliation_loop_sleep_duration', 3600.0)


@pytest.fixture
def mercadopago_token(monkeypatch: pytest.MonkeyPatch) -> str:
    token = 'APP_USR-test-token'
    monkeypatch.setattr(mercadopago_settings, 'access_token', token)
    return token


@asynccontextmanager
async def running_app():
    async with LifespanManager(app):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url='http://tests') as client:
            yield client


@pytest.fixture
async def api_client():
    async with running_app() as client:
        yield client


@pytest.fixture
async def mercadopago_api_client(mercadopago_token: str):
    async with running_app() as client:
        yield client
