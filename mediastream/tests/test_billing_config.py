from __future__ import annotations

import pytest

from mediastream.config import load_billing_config


def test_load_billing_config_defaults():
    config = load_billing_config({})

    assert config.stripe_secret_key == ""
    assert config.stripe_api_version is None
    assert config.db_config["port"] == 5432
    assert config.db_config["connect_timeout"] == 5


def test_load_billing_config_reads_environment():
    config = load_billing_config(
        {
            "STRIPE_SECRET_KEY": " sk_test_123 ",
            "STRIPE_WEBHOOK_SECRET": "whsec_test",
            "STRIPE_API_VERSION": "2024-06-20",
            "DB_HOST": "db.internal",
            "DB_PORT": "6543",
            "DB_CONNECT_TIMEOUT": "2.5",
        }
    )

    assert config.stripe_secret_key == "sk_test_123"
    assert config.stripe_webhook_secret == "whsec_test"
    assert config.stripe_api_version == "2024-06-20"
    assert config.db_config["host"] == "db.internal"
    assert config.db_config["port"] == 6543
    assert config.db_config["connect_timeout"] == 3


def test_load_billing_config_rejects_bad_port():
    with pytest.raises(ValueError):
        load_billing_config({"DB_PORT": "not-a-port"})
