import datetime as dt
from urllib.parse import parse_qs, urlsplit
from zoneinfo import ZoneInfo

import pytest

from agenda.modules.appointments.links import (
    LinkCredentials,
    SignedLinkService,
    StoredTokenService,
    get_link_service,
    link_expiry,
)
from agenda.modules.appointments.models import LinkAction

TZ = ZoneInfo("America/Sao_Paulo")
START = dt.datetime(2027, 3, 1, 9, 0, tzinfo=TZ)
NOW = dt.datetime(2027, 2, 1, 12, 0, tzinfo=dt.timezone.utc)
AFTER_EXPIRY = START + dt.timedelta(hours=25)


def query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


@pytest.fixture
def signed() -> SignedLinkService:
    return SignedLinkService(secret="s3cret", base_url="https://agenda.test/")


@pytest.fixture
def stored() -> StoredTokenService:
    return StoredTokenService(base_url="https://agenda.test")


def test_factory_follows_mode() -> None:
    assert isinstance(get_link_service("signed"), SignedLinkService)
    assert isinstance(get_link_service("stored"), StoredTokenService)


def test_expiry_is_relative_to_appointment_time() -> None:
    assert link_expiry(START) == START + dt.timedelta(hours=24)
    assert link_expiry(START, hours=2) == START + dt.timedelta(hours=2)


# --- signed ---


async def test_signed_link_round_trip(session, signed, make_appointment) -> None:
    appt = await make_appointment(START)

    link = await signed.issue(session, appt.id, LinkAction.CONFIRM, START)
    params = query(link.url)

    assert link.url.startswith("https://agenda.test/confirm?")
    assert link.token is None
    credentials = LinkCredentials(id=params["id"], expires=params["expires"], sig=params["sig"])
    result = await signed.validate(session, credentials, LinkAction.CONFIRM, now=NOW)
    assert result.valid
    assert result.appointment_id == appt.id


@pytest.mark.parametrize("field", ["id", "expires", "sig", "action"])
async def test_signed_link_tampering_is_invalid(session, signed, make_appointment, other_professional, field) -> None:
    appt = await make_appointment(START)
    decoy = await make_appointment(START, professional_id=other_professional.id)
    params = query((await signed.issue(session, appt.id, LinkAction.CONFIRM, START)).url)
    credentials = LinkCredentials(id=params["id"], expires=params["expires"], sig=params["sig"])
    action = LinkAction.CONFIRM

    if field == "id":
        credentials.id = decoy.id
    elif field == "expires":
        credentials.expires += 3600
    elif field == "sig":
        credentials.sig = "0" * 64
    else:
        action = LinkAction.CANCEL

    result = await signed.validate(session, credentials, action, now=NOW)

    assert not result.valid
    assert result.reason == "invalid"
    assert result.message == "Link invalido"


async def test_signed_link_expires(session, signed, make_appointment) -> None:
    appt = await make_appointment(START)
    params = query((await signed.issue(session, appt.id, LinkAction.CANCEL, START)).url)
    credentials = LinkCredentials(id=params["id"], expires=params["expires"], sig=params["sig"])

    result = await signed.validate(session, credentials, LinkAction.CANCEL, now=AFTER_EXPIRY)

    assert result.reason == "expired"


async def test_signed_link_for_cancelled_appointment(session, signed, make_appointment) -> None:
    appt = await make_appointment(START, status="CANCELADO_PROFISSIONAL")
    params = query((await signed.issue(session, appt.id, LinkAction.CONFIRM, START)).url)
    credentials = LinkCredentials(id=params["id"], expires=params["expires"], sig=params["sig"])

    result = await signed.validate(session, credentials, LinkAction.CONFIRM, now=NOW)

    assert result.reason == "not_modifiable"
    assert not await signed.invalidate(session, credentials)


async def test_signed_link_missing_parts(session, signed) -> None:
    result = await signed.validate(session, LinkCredentials(sig="abc"), LinkAction.CONFIRM, now=NOW)

    assert result.reason == "invalid"


# --- stored ---


async def test_stored_token_is_single_use(session, stored, make_appointment) -> None:
    appt = await make_appointment(START)
    link = await stored.issue(session, appt.id, LinkAction.CONFIRM, START)
    credentials = LinkCredentials(token=query(link.url)["token"])

    assert link.token == credentials.token
    assert len(link.token) == 64
    assert (await stored.validate(session, credentials, LinkAction.CONFIRM, now=NOW)).valid

    assert await stored.invalidate(session, credentials)
    result = await stored.validate(session, credentials, LinkAction.CONFIRM, now=NOW)

    assert result.reason == "used"
    assert result.message == "Este link ja foi utilizado"
    assert not await stored.invalidate(session, credentials)


async def test_stored_token_wrong_action_or_unknown(session, stored, make_appointment) -> None:
    appt = await make_appointment(START)
    link = await stored.issue(session, appt.id, LinkAction.CONFIRM, START)

    wrong_action = await stored.validate(session, LinkCredentials(token=link.token), LinkAction.CANCEL, now=NOW)
    unknown = await stored.validate(session, LinkCredentials(token="f" * 64), LinkAction.CONFIRM, now=NOW)
    empty = await stored.validate(session, LinkCredentials(), LinkAction.CONFIRM, now=NOW)

    assert wrong_action.reason == unknown.reason == empty.reason == "invalid"


async def test_stored_token_expires(session, stored, make_appointment) -> None:
    appt = await make_appointment(START)
    link = await stored.issue(session, appt.id, LinkAction.CANCEL, START)

    result = await stored.validate(session, LinkCredentials(token=link.token), LinkAction.CANCEL, now=AFTER_EXPIRY)

    assert result.reason == "expired"


async def test_regenerate_revokes_previous_links(session, stored, make_appointment) -> None:
    appt = await make_appointment(START)
    old = await stored.issue_pair(session, appt.id, START)

    moved = START + dt.timedelta(days=7)
    fresh = await stored.regenerate(session, appt.id, moved)

    old_confirm = LinkCredentials(token=old[LinkAction.CONFIRM].token)
    new_cancel = LinkCredentials(token=fresh[LinkAction.CANCEL].token)
    assert (await stored.validate(session, old_confirm, LinkAction.CONFIRM, now=NOW)).reason == "used"
    assert (await stored.validate(session, new_cancel, LinkAction.CANCEL, now=NOW)).valid
    assert fresh[LinkAction.CONFIRM].expires_at == moved + dt.timedelta(hours=24)
