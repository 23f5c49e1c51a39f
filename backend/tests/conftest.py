import os

# Set required env vars before any catalog_sync module is imported so
# pydantic-settings validation succeeds during tests.
_test_env = {
    "POSTGRES_HOST": "localhost",
    "POSTGRES_DB": "catalog_sync_test",
    "POSTGRES_USER": "testuser",
    "POSTGRES_PASSWORD": "testpassword",
    "SHOP_DOMAIN": "test-shop.myshopify.com",
    "SHOP_ACCESS_TOKEN": "test-access-token",
    "SCHEDULER_ENABLED": "false",
    "BULK_POLL_INTERVAL_SECONDS": "0",
    "CLEANUP_BATCH_PAUSE_SECONDS": "0",
    "CORS_ORIGINS": '["http://localhost:5173"]',
}

for key, value in _test_env.items():
    os.environ.setdefault(key, value)
