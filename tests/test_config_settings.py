from wcbridge.config import Settings


def test_project_id_from_walletconnect_env(monkeypatch):
    """The project id loads from WALLETCONNECT_PROJECT_ID."""

    monkeypatch.setenv("WALLETCONNECT_PROJECT_ID", "primary-id")
    monkeypatch.setenv("NEXT_PUBLIC_WALLETCONNECT_PROJECT_ID", "frontend-id")

    settings = Settings()

    assert settings.walletconnect_project_id == "primary-id"


def test_project_id_falls_back_to_frontend_variable(monkeypatch):
    """The web frontend's variable name is honoured when nothing else is set."""

    monkeypatch.delenv("WALLETCONNECT_PROJECT_ID", raising=False)
    monkeypatch.delenv("WC_PROJECT_ID", raising=False)
    monkeypatch.setenv("NEXT_PUBLIC_WALLETCONNECT_PROJECT_ID", "frontend-id")

    settings = Settings(_env_file=None)

    assert settings.walletconnect_project_id == "frontend-id"


def test_chain_defaults(monkeypatch):
    """Sessions are granted on Lens Chain unless configured otherwise."""

    monkeypatch.delenv("CHAIN_ID", raising=False)

    settings = Settings(_env_file=None)

    assert settings.chain_id == 232
    assert settings.caip2_chain == "eip155:232"
    assert settings.confirmation_timeout_seconds == 300
    assert settings.notify_superseded_requests is True


def test_app_metadata(monkeypatch):
    monkeypatch.setenv("APP_NAME", "My Bridge")

    settings = Settings(_env_file=None)

    assert settings.app_metadata["name"] == "My Bridge"
    assert set(settings.app_metadata) == {"name", "description", "url", "icons"}


def test_only_bridge_settings_are_declared():
    """Chain settings cover what the bridge reads: id, name and RPC URL."""

    chain_fields = {name for name in Settings.model_fields if name.startswith(("chain", "native", "rpc"))}

    assert chain_fields == {"chain_id", "chain_name", "rpc_url"}
