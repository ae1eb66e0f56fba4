"""Invitation access codes (``KEL-XXXX-XXXX``).

Format failures are reported as such so a recipient can fix a typo. Codes that
are well formed but unknown all get the same generic message.
"""

import logging
import re
import secrets
import string
import uuid
from collections.abc import Iterable
from random import Random

from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.crud.access_codes import AccessCodeCRUD
from mailroom.models.access_code import AccessCode
from mailroom.schemas.access_codes import AccessCodeLookup

logger = logging.getLogger(__name__)

PREFIX = "KEL"
BLOCK = 4
ALPHABET = string.ascii_uppercase + string.digits
CODE_PATTERN = re.compile(rf"^{PREFIX}-[A-Z0-9]{{{BLOCK}}}-[A-Z0-9]{{{BLOCK}}}$")

MSG_REQUIRED = "Access code is required"
MSG_FORMAT = "Invalid format. Please enter code as KEL-XXXX-XXXX"
MSG_NOT_FOUND = (
    "Invalid invitation link. Please check the link and try again, "
    "or contact an administrator for assistance."
)
MSG_USED = (
    "This invitation link has already been used. Each invitation link can only be used once. "
    "Please contact an administrator if you need access."
)
MSG_VALID = "Access code is valid"

MAX_COLLISION_ROUNDS = 10

_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def normalize_access_code(raw: str | None) -> str:
    if not raw:
        return ""
    return _WHITESPACE.sub("", raw).upper()


def format_access_code_input(raw: str | None) -> str:
    """Reshape keyboard input into ``KEL-XXXX-XXXX`` as the user types."""
    chars = _NON_ALNUM.sub("", raw or "").upper()
    if not chars or PREFIX.startswith(chars):
        return chars

    body = chars[len(PREFIX) :] if chars.startswith(PREFIX) else chars
    body = body[: BLOCK * 2]

    formatted = f"{PREFIX}-{body[:BLOCK]}"
    if len(body) > BLOCK:
        formatted += f"-{body[BLOCK:]}"
    return formatted


def validate_access_code_format(code: str | None) -> bool:
    return bool(CODE_PATTERN.match(normalize_access_code(code)))


def generate_access_code(rng: Random | None = None) -> str:
    choice = rng.choice if rng is not None else secrets.choice
    blocks = ("".join(choice(ALPHABET) for _ in range(BLOCK)) for _ in range(2))
    return "-".join((PREFIX, *blocks))


def generate_unique_codes(count: int, existing: Iterable[str] = (), rng: Random | None = None) -> list[str]:
    taken = set(existing)
    codes: list[str] = []
    while len(codes) < count:
        code = generate_access_code(rng)
        if code in taken:
            continue
        taken.add(code)
        codes.append(code)
    return codes


class AccessCodeService:
    def __init__(self, rng: Random | None = None) -> None:
        self.rng = rng

    async def lookup(self, session: AsyncSession, raw_code: str | None) -> AccessCodeLookup:
        code = normalize_access_code(raw_code)
        if not code:
            return AccessCodeLookup(valid=False, exists=False, message=MSG_REQUIRED)

        if not CODE_PATTERN.match(code):
            return AccessCodeLookup(valid=False, exists=False, message=MSG_FORMAT)

        record = await AccessCodeCRUD(session).get_by_code(code)
        if record is None:
            return AccessCodeLookup(valid=False, exists=False, message=MSG_NOT_FOUND)

        if record.used:
            return AccessCodeLookup(valid=False, exists=True, used=True, message=MSG_USED)

        return AccessCodeLookup(valid=True, exists=True, used=False, message=MSG_VALID, code_id=record.id)

    async def create_codes(
        self,
        session: AsyncSession,
        count: int,
        *,
        recipient_name: str,
        recipient_address: str | None = None,
    ) -> list[AccessCode]:
        crud = AccessCodeCRUD(session)

        async with session.begin():
            codes = generate_unique_codes(count, rng=self.rng)
            for _ in range(MAX_COLLISION_ROUNDS):
                clashes = await crud.existing_codes(codes)
                if not clashes:
                    break
                logger.info("Regenerating %d access codes that already exist", len(clashes))
                keep = [c for c in codes if c not in clashes]
                codes = keep + generate_unique_codes(len(clashes), existing=set(keep) | clashes, rng=self.rng)
            else:
                raise RuntimeError("Could not generate unique access codes")

            rows = await crud.add_many(codes, recipient_name=recipient_name, recipient_address=recipient_address)

        return rows

    async def redeem(self, session: AsyncSession, raw_code: str, user_id: uuid.UUID | None) -> bool:
        code = normalize_access_code(raw_code)
        if not CODE_PATTERN.match(code):
            return False

        async with session.begin():
            redeemed = await AccessCodeCRUD(session).mark_used(code, user_id)

        if not redeemed:
            logger.info("Access code %s was not redeemed (unknown or already used)", code)
        return redeemed
