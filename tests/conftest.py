import pytest
import sys
import os
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Add parent directory to path to allow importing the app modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from booking.normalizer import OrderNormalizer
from booking.providers import ProviderResolver
from booking.service import BookingService
from config import Settings
from dependencies import get_booking_service, get_bookingkit_client, get_shopify_client
from main import create_app
from routes.rate_limit import reset_rate_limits
from services.bookingkit import BookingKitClient, TokenCache

from factories import GLOBAL_KEY, LLAMAS_KEY, WEBHOOK_SECRET, FakePartner, FakeShopify


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture(name="settings")
def settings_fixture():
    return Settings(
        environment="test",
        shopify_store_url="test-shop.myshopify.com",
        shopify_access_token="shpat_test",
        api_key=GLOBAL_KEY,
        host_api_keys={"llamas": LLAMAS_KEY},
        bookingkit_client_id="bk-client",
        bookingkit_client_secret="bk-secret",
        bookingkit_webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture(name="store")
def store_fixture():
    return FakeShopify()


@pytest.fixture(name="booking_service")
def booking_service_fixture(store):
    return BookingService(store, OrderNormalizer(ProviderResolver(store)))


@pytest.fixture(name="partner")
def partner_fixture():
    return FakePartner()


@pytest.fixture(name="bookingkit_client")
def bookingkit_client_fixture(settings, partner):
    return BookingKitClient(
        settings.bookingkit_client_id,
        settings.bookingkit_client_secret,
        TokenCache(),
        base_url=settings.bookingkit_base_url,
        webhook_secret=settings.bookingkit_webhook_secret,
        transport=partner.transport,
    )


@pytest.fixture(name="app")
def app_fixture(settings, store, booking_service, bookingkit_client):
    application = create_app(settings)
    application.dependency_overrides[get_shopify_client] = lambda: store
    application.dependency_overrides[get_booking_service] = lambda: booking_service
    application.dependency_overrides[get_bookingkit_client] = lambda: bookingkit_client
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture(name="client")
async def client_fixture(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def global_headers():
    return {"X-API-Key": GLOBAL_KEY}


@pytest.fixture
def llamas_headers():
    return {"X-API-Key": LLAMAS_KEY}
