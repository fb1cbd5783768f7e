import pytest

from conftest import APP, DEVICE_ID, write_access_lists
from nosuite.core.encryption import hash_password
from nosuite.core.errors import DecryptFailure, Forbidden, Refuse
from nosuite.schemas.auth import Device
from nosuite.services import tokens as tokens_module

AUTH = "auth.nosuite.fr"
DEVICE = Device(id=DEVICE_ID, browser="Firefox", platform="Linux")


@pytest.fixture
def account(services):
    hashed = hash_password("pw1")
    services.credentials.create_user("a@x.com", hashed, "Ann")
    services.credentials.add_device("a@x.com", DEVICE, hashed)
    return hashed


def issue(services, hashed, scope=AUTH, device=DEVICE, ttl_days=1, email="a@x.com"):
    return services.tokens.issue_token(email, scope, device, ttl_days, hashed)


def test_issue_then_validate(services, account):
    token = issue(services, account)
    check = services.tokens.validate_token(token, AUTH, DEVICE_ID)
    assert check.valid
    assert check.email == "a@x.com"
    assert check.data.scope == AUTH
    assert check.data.device.id == DEVICE_ID
    assert check.data.hashed_password == account


def test_token_is_opaque_hex(services, account):
    token = issue(services, account)
    bytes.fromhex(token)
    assert "a@x.com" not in token


def test_password_change_revokes_tokens(services, account):
    token = issue(services, account)
    services.credentials.change_password("a@x.com", account, hash_password("pw2"))

    check = services.tokens.validate_token(token, AUTH, DEVICE_ID)
    assert not check.valid
    assert check.reason == "password changed"

    fresh = issue(services, hash_password("pw2"))
    assert services.tokens.validate_token(fresh, AUTH, DEVICE_ID).valid


def test_password_change_keeps_data_readable(services, account):
    new_hash = hash_password("pw2")
    services.credentials.change_password("a@x.com", account, new_hash)
    assert services.credentials.read_name("a@x.com", new_hash) == "Ann"
    assert [d.id for d in services.credentials.list_devices("a@x.com", new_hash)] == [DEVICE_ID]
    with pytest.raises(DecryptFailure):
        services.credentials.read_name("a@x.com", account)


def test_password_change_requires_old_password(services, account):
    with pytest.raises(Forbidden):
        services.credentials.change_password("a@x.com", hash_password("nope"), hash_password("pw2"))


@pytest.mark.parametrize(
    "origin,device_id,reason",
    [
        ("evil.example.com", DEVICE_ID, "not authorized"),
        (None, DEVICE_ID, "not authorized"),
        ("fakenosuite.fr", DEVICE_ID, "not authorized"),
        (APP, DEVICE_ID, "does not match"),
        (AUTH, "OTHER", "device mismatch"),
        (AUTH, None, "device mismatch"),
    ],
)
def test_rejections(services, account, origin, device_id, reason):
    check = services.tokens.validate_token(issue(services, account), origin, device_id)
    assert not check.valid
    assert reason in check.reason


def test_expired(services, account, monkeypatch):
    token = issue(services, account, ttl_days=1)
    later = tokens_module.now_ms() + 2 * tokens_module.DAY_MS
    monkeypatch.setattr(tokens_module, "now_ms", lambda: later)
    assert services.tokens.validate_token(token, AUTH, DEVICE_ID).reason == "expired"


def test_unknown_user(services, account):
    token = issue(services, account, email="ghost@x.com")
    assert services.tokens.validate_token(token, AUTH, DEVICE_ID).reason == "unknown user"


def test_unregistered_device(services, account):
    stranger = Device(id="STRANGER")
    token = issue(services, account, device=stranger)
    assert services.tokens.validate_token(token, AUTH, "STRANGER").reason == "device not registered"


def test_device_binding_can_be_disabled(services, account):
    services.settings.ENFORCE_DEVICE_BINDING = False
    token = issue(services, account, device=None)
    assert services.tokens.validate_token(token, AUTH, None).valid


@pytest.mark.parametrize("token", [None, "", "zz", "00" * 40, 123, ["00"]])
def test_garbage_tokens(services, account, token):
    assert not services.tokens.validate_token(token, AUTH, DEVICE_ID).valid


def test_non_string_origin_is_not_authorized(services, account):
    assert not services.tokens.origin_authorized(42)
    check = services.tokens.validate_token(issue(services, account), ["auth.nosuite.fr"], DEVICE_ID)
    assert not check.valid


def test_existing_account_is_refused_at_sign_up(services, account):
    with pytest.raises(Refuse):
        services.credentials.create_user("a@x.com", account, "Ann again")
    assert services.credentials.read_name("a@x.com", account) == "Ann"


def test_only_testers_may_authenticate(services):
    write_access_lists(services.settings.USERS_ROOT, testers=["a@x.com"], beta=["beta@x.com"])
    assert services.credentials.may_authenticate("a@x.com")
    assert not services.credentials.may_authenticate("beta@x.com")
    assert services.credentials.may_sign_up("beta@x.com")


def test_add_device_deduplicates(services, account):
    services.credentials.add_device("a@x.com", Device(id=DEVICE_ID, browser="Chrome"), account)
    devices = services.credentials.list_devices("a@x.com", account)
    assert len(devices) == 1
    assert devices[0].browser == "Chrome"


def test_credentials_are_encrypted_at_rest(services, account):
    user_dir = services.resolver.user_dir("a@x.com")
    assert b"Ann" not in (user_dir / "name.enc").read_bytes()
    assert b"password" not in (user_dir / "verification.enc").read_bytes()
    assert services.credentials.verify_password("a@x.com", account)
    assert not services.credentials.verify_password("a@x.com", hash_password("nope"))


def test_demo_account_reset(services):
    template = services.resolver.user_dir("template@nosuite.fr")
    (template / "notes.nosuite.fr").mkdir(parents=True)
    (template / "notes.nosuite.fr" / "welcome.json").write_text('"hello"')

    demo = services.resolver.user_dir("demo@nosuite.fr")
    demo.mkdir(parents=True)
    (demo / "leftover").write_text("x")

    services.credentials.reset_demo_account()
    assert not (demo / "leftover").exists()
    assert (demo / "notes.nosuite.fr" / "welcome.json").read_text() == '"hello"'
    assert services.credentials.read_name("demo@nosuite.fr", "") == "Compte démo"
    assert services.credentials.verify_password("demo@nosuite.fr", "anything")
