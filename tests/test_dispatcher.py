"""Tests for the socket command dispatcher."""

import asyncio
import json
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from maelink.core.timeutils import utcnow
from maelink.models.action_log import ActionLog
from maelink.models.invite_code import InviteCode
from maelink.models.user import User

from conftest import DEFAULT_PASSWORD, SYSTEM_KEY


async def send(dispatcher, session, payload):
    raw = payload if isinstance(payload, str) else json.dumps(payload)
    await dispatcher.dispatch(session, raw)


# ── Framing ─────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_unparseable_frame_is_bad_json(dispatcher, connect, registry):
    sock, session = connect()
    await send(dispatcher, session, "{not json")
    assert sock.last == {"error": True, "code": 400, "reason": "badJSON"}
    await send(dispatcher, session, "[1, 2]")
    assert sock.last["reason"] == "badJSON"
    # the connection survives
    assert sock in registry
    assert sock.closed_with is None


@pytest.mark.asyncio
async def test_unknown_or_missing_cmd_is_not_found(dispatcher, connect):
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "teleport"})
    assert sock.last == {"error": True, "code": 404, "reason": "notFound"}
    await send(dispatcher, session, {"user": "alice"})
    assert sock.last["reason"] == "notFound"


@pytest.mark.asyncio
async def test_missing_required_field_is_bad_request(dispatcher, connect):
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "reg", "user": "alice", "pswd": "pw"})
    assert sock.last == {"error": True, "code": 400, "reason": "badRequest"}
    await send(dispatcher, session, {"cmd": "login_token", "token": ""})
    assert sock.last["reason"] == "badRequest"


@pytest.mark.asyncio
async def test_client_info(dispatcher, connect):
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "client_info", "client": "maeweb", "version": "1.2"})
    assert sock.last == {"error": False, "code": 200, "reason": "clientInfoUpdated"}
    assert session.client == "maeweb" and session.version == "1.2"

    await send(dispatcher, session, {"cmd": "client_info"})
    assert sock.last["reason"] == "badRequest"
    assert session.client == "maeweb"


# ── Registration ────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_register_success(dispatcher, connect, make_code, db_session):
    await make_code("XYZ1")
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "reg", "user": "alice", "pswd": "pw", "code": "XYZ1"})

    reply = sock.last
    assert reply["error"] is False
    assert reply["user"] == "alice"
    assert reply["display"] == "alice"
    assert len(reply["token"]) == 64
    assert session.authenticated and session.token == reply["token"]

    remaining = await db_session.scalar(select(func.count()).select_from(InviteCode))
    assert remaining == 0
    user = (await db_session.execute(select(User).where(User.name == "alice"))).scalar_one()
    assert user.role == "user"
    assert user.pswd != "pw"
    assert user.expires_at is not None


@pytest.mark.asyncio
async def test_invite_code_is_single_use(dispatcher, connect, make_code):
    await make_code("XYZ1")
    sock1, s1 = connect()
    sock2, s2 = connect()
    await send(dispatcher, s1, {"cmd": "reg", "user": "alice", "pswd": "pw", "code": "XYZ1"})
    await send(dispatcher, s2, {"cmd": "reg", "user": "bobby", "pswd": "pw", "code": "XYZ1"})
    assert sock1.last["error"] is False
    assert sock2.last == {"error": True, "code": 400, "reason": "badCode"}
    assert not s2.authenticated


@pytest.mark.asyncio
@pytest.mark.file_db
async def test_concurrent_registrations_share_one_code(dispatcher, connect, make_code, db_session):
    await make_code("RACE")
    sock1, s1 = connect()
    sock2, s2 = connect()
    await asyncio.gather(
        send(dispatcher, s1, {"cmd": "reg", "user": "alice", "pswd": "pw", "code": "RACE"}),
        send(dispatcher, s2, {"cmd": "reg", "user": "bobby", "pswd": "pw", "code": "RACE"}),
    )
    replies = [sock1.last, sock2.last]
    assert sorted(r["error"] for r in replies) == [False, True]
    assert [r["reason"] for r in replies if r["error"]] == ["badCode"]
    assert await db_session.scalar(select(func.count()).select_from(User)) == 1


@pytest.mark.asyncio
async def test_unknown_and_expired_codes_rejected(dispatcher, connect, make_code):
    await make_code("OLD1", expires_at=utcnow() - timedelta(days=1))
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "reg", "user": "alice", "pswd": "pw", "code": "NOPE"})
    assert sock.last["reason"] == "badCode"
    await send(dispatcher, session, {"cmd": "reg", "user": "alice", "pswd": "pw", "code": "OLD1"})
    assert sock.last["reason"] == "badCode"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name,reason",
    [
        ("abc", "usernameTooShort"),
        ("a" * 17, "usernameTooLong"),
        ("system", "reservedName"),
        ("SYSTEM", "reservedName"),
    ],
)
async def test_username_rules_checked_before_store(dispatcher, connect, make_code, db_session, name, reason):
    await make_code("KEEP")
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "reg", "user": name, "pswd": "pw", "code": "KEEP"})
    assert sock.last["reason"] == reason
    # nothing consumed, nothing created
    assert await db_session.scalar(select(func.count()).select_from(InviteCode)) == 1
    assert await db_session.scalar(select(func.count()).select_from(User)) == 0


@pytest.mark.asyncio
async def test_duplicate_name_keeps_code(dispatcher, connect, make_code, make_user, db_session):
    await make_user("alice")
    await make_code("XYZ2")
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "reg", "user": "alice", "pswd": "pw", "code": "XYZ2"})
    assert sock.last == {"error": True, "code": 409, "reason": "userExists"}
    assert await db_session.scalar(select(func.count()).select_from(InviteCode)) == 1


@pytest.mark.asyncio
async def test_registration_mints_replacement_code_when_enabled(dispatcher, connect, make_code, db_session, monkeypatch):
    from maelink.core.config import settings

    monkeypatch.setattr(settings, "INVITE_REGENERATE_ON_USE", True)
    await make_code("XYZ3")
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "reg", "user": "carol", "pswd": "pw", "code": "XYZ3"})
    assert sock.last["error"] is False
    codes = (await db_session.execute(select(InviteCode))).scalars().all()
    assert len(codes) == 1
    assert codes[0].value != "XYZ3"
    assert codes[0].value.startswith("MLNK-")


# ── Password / token login ──────────────────────────────────────────
@pytest.mark.asyncio
async def test_login_password(dispatcher, connect, make_user):
    alice = await make_user("alice")
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "login_pswd", "user": "alice", "pswd": DEFAULT_PASSWORD})
    assert sock.last["error"] is False
    assert sock.last["token"] == alice.token
    assert session.user == "alice"


@pytest.mark.asyncio
async def test_login_password_failures(dispatcher, connect, make_user, make_system_user):
    await make_user("alice")
    await make_system_user()
    sock, session = connect()

    await send(dispatcher, session, {"cmd": "login_pswd", "user": "nobody", "pswd": "x"})
    assert sock.last == {"error": True, "code": 404, "reason": "userNotFound"}
    await send(dispatcher, session, {"cmd": "login_pswd", "user": "alice", "pswd": "wrong"})
    assert sock.last == {"error": True, "code": 400, "reason": "badPswd"}
    await send(dispatcher, session, {"cmd": "login_pswd", "user": "system", "pswd": "x"})
    assert sock.last["reason"] == "systemAccountUseKey"
    assert not session.authenticated


@pytest.mark.asyncio
async def test_banned_user_cannot_log_in_any_way(dispatcher, connect, make_user):
    mallory = await make_user("mallory", banned=True, banned_until=utcnow() + timedelta(days=1))
    sock, session = connect()
    for payload in (
        {"cmd": "login_pswd", "user": "mallory", "pswd": DEFAULT_PASSWORD},
        {"cmd": "login_token", "token": mallory.token},
        {"cmd": "provide_token", "token": mallory.token},
    ):
        await send(dispatcher, session, payload)
        assert sock.last["reason"] == "banned"
        assert sock.last["code"] == 403
    assert not session.authenticated


@pytest.mark.asyncio
async def test_lapsed_ban_does_not_block(dispatcher, connect, make_user):
    await make_user("mallory", banned=True, banned_until=utcnow() - timedelta(minutes=1))
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "login_pswd", "user": "mallory", "pswd": DEFAULT_PASSWORD})
    assert sock.last["error"] is False


@pytest.mark.asyncio
async def test_expiry_is_left_to_the_sweep(dispatcher, connect, make_user):
    old = await make_user("oldie", expires_at=utcnow() - timedelta(minutes=1))
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "login_token", "token": old.token})
    assert sock.last["error"] is False
    assert session.authenticated


@pytest.mark.asyncio
async def test_login_token_and_provide_token(dispatcher, connect, make_user):
    alice = await make_user("alice")
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "login_token", "token": alice.token})
    assert sock.last["user"] == "alice"

    sock2, session2 = connect()
    await send(dispatcher, session2, {"cmd": "provide_token", "token": alice.token})
    assert sock2.sent == []
    assert session2.authenticated and session2.user == "alice"

    await send(dispatcher, session2, {"cmd": "provide_token", "token": "bogus"})
    assert sock2.last["reason"] == "userNotFound"


@pytest.mark.asyncio
async def test_login_clears_pending_deletion(dispatcher, connect, make_user, fetch_user):
    alice = await make_user("alice", deletion_scheduled_at=utcnow() + timedelta(days=7))
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "login_pswd", "user": "alice", "pswd": DEFAULT_PASSWORD})
    assert sock.last["error"] is False
    assert (await fetch_user(alice.id)).deletion_scheduled_at is None


# ── System key login ────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_login_syskey_rotates_token_and_audits(dispatcher, connect, make_system_user, db_session, fetch_user):
    system = await make_system_user()
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "login_syskey", "user": "system", "key": SYSTEM_KEY})

    reply = sock.last
    assert reply["error"] is False
    assert reply["role"] == "sysadmin"
    assert session.token == reply["token"]
    assert (await fetch_user(system.id)).token == reply["token"]

    entries = (await db_session.execute(select(ActionLog))).scalars().all()
    assert [e.action for e in entries] == ["syskey_login"]
    assert entries[0].actor_id == system.id


@pytest.mark.asyncio
async def test_login_syskey_revokes_previous_token_sessions(dispatcher, connect, make_system_user):
    await make_system_user()
    first_sock, first = connect()
    await send(dispatcher, first, {"cmd": "login_syskey", "user": "system", "key": SYSTEM_KEY})
    second_sock, second = connect()
    await send(dispatcher, second, {"cmd": "login_syskey", "user": "system", "key": SYSTEM_KEY})

    assert first_sock.closed_with is not None
    assert {"cmd": "token_revoked"} in first_sock.sent
    assert second.authenticated


@pytest.mark.asyncio
async def test_login_syskey_failures(dispatcher, connect, make_user, make_system_user):
    await make_user("alice")
    await make_system_user("keyless", key=None)
    await make_system_user("system")
    sock, session = connect()

    await send(dispatcher, session, {"cmd": "login_syskey", "user": "alice", "key": "x"})
    assert sock.last == {"error": True, "code": 404, "reason": "userNotFoundOrNotSystem"}
    await send(dispatcher, session, {"cmd": "login_syskey", "user": "keyless", "key": "x"})
    assert sock.last["reason"] == "noSystemKey"
    await send(dispatcher, session, {"cmd": "login_syskey", "user": "system", "key": "wrong"})
    assert sock.last["reason"] == "badKey"
    await send(dispatcher, session, {"cmd": "login_syskey", "user": "system"})
    assert sock.last["reason"] == "badRequest"


# ── Avatar ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_set_avatar(dispatcher, connect, make_user, fetch_user):
    alice = await make_user("alice")
    sock, session = connect()

    await send(dispatcher, session, {"cmd": "set_avatar", "url": "https://img.example/a.png"})
    assert sock.last == {"error": True, "code": 401, "reason": "Unauthorized"}

    await send(dispatcher, session, {"cmd": "provide_token", "token": alice.token})
    await send(dispatcher, session, {"cmd": "set_avatar", "url": "https://img.example/" + "a" * 600 + ".png"})
    assert sock.last["reason"] == "urlTooLong"
    await send(dispatcher, session, {"cmd": "set_avatar", "url": "https://img.example/page.html"})
    assert sock.last["reason"] == "invalidUrl"

    url = "https://img.example/me.JPG?size=64"
    await send(dispatcher, session, {"cmd": "set_avatar", "url": url})
    assert sock.last["error"] is False
    assert session.avatar == url
    assert (await fetch_user(alice.id)).avatar == url


# ── Resilience ──────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_store_failure_reports_server_error(dispatcher, connect, monkeypatch):
    from sqlalchemy.exc import OperationalError

    from maelink.services import accounts

    async def broken(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(accounts, "get_user_by_name", broken)
    sock, session = connect()
    await send(dispatcher, session, {"cmd": "login_pswd", "user": "alice", "pswd": "pw"})
    assert sock.last == {"error": True, "code": 500, "reason": "serverError"}


@pytest.mark.asyncio
async def test_dead_socket_does_not_raise(dispatcher, connect, make_user):
    alice = await make_user("alice")
    sock, session = connect(fail=True)
    await send(dispatcher, session, "{broken")
    await send(dispatcher, session, {"cmd": "login_token", "token": alice.token})
    assert session.authenticated
