"""
Encodage / décodage des charges utiles de QR code de présence.

Format QR (fixe) : "FC-ATTEND:" + base64(JSON camelCase)
Format jeton offline : base64(JSON) sans préfixe, avec "offline": true

Le décodage ne lève jamais d'exception sur une entrée arbitraire : il retourne
soit la charge utile, soit un MalformedToken décrivant le problème.
"""

import base64
import binascii
import json
import secrets
import string
from datetime import datetime
from typing import Union

from pydantic import ValidationError

from fellowship.schemas.payload import CheckinPayload, MalformedToken, OfflineToken

QR_PREFIX = "FC-ATTEND:"
# Un code émis fait quelques centaines de caractères
MAX_ENCODED_LENGTH = 4096

_TOKEN_ALPHABET = string.ascii_letters + string.digits


def generate_token(length: int = 16) -> str:
    """Jeton aléatoire identifiant une émission de code (pas un utilisateur)."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def _to_base64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _from_base64(text: str) -> Union[dict, MalformedToken]:
    if len(text) > MAX_ENCODED_LENGTH:
        return MalformedToken(detail="Code trop long.")
    try:
        raw = base64.b64decode(text.strip(), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError, RecursionError):
        return MalformedToken(detail="Encodage invalide.")
    if not isinstance(data, dict):
        return MalformedToken(detail="Contenu JSON inattendu.")
    return data


def encode_payload(payload: CheckinPayload) -> str:
    return QR_PREFIX + _to_base64(payload.model_dump(mode="json", by_alias=True))


def decode_payload(raw: str) -> Union[CheckinPayload, MalformedToken]:
    if not isinstance(raw, str) or not raw.startswith(QR_PREFIX):
        return MalformedToken(detail="Préfixe FC-ATTEND absent.")
    data = _from_base64(raw[len(QR_PREFIX):])
    if isinstance(data, MalformedToken):
        return data
    try:
        return CheckinPayload.model_validate(data)
    except ValidationError as exc:
        return MalformedToken(detail=f"Champs manquants ou invalides ({exc.error_count()}).")


def encode_offline_token(user_id: str, event_name: str, timestamp: datetime) -> str:
    token = OfflineToken(
        user_id=user_id,
        event_name=event_name,
        timestamp=timestamp,
        offline=True,
        issued_token=generate_token(12),
    )
    return _to_base64(token.model_dump(mode="json", by_alias=True))


def decode_offline_token(raw: str) -> Union[OfflineToken, MalformedToken]:
    if not isinstance(raw, str) or not raw or raw.startswith(QR_PREFIX):
        return MalformedToken(detail="Jeton offline attendu.")
    data = _from_base64(raw)
    if isinstance(data, MalformedToken):
        return data
    try:
        return OfflineToken.model_validate(data)
    except ValidationError as exc:
        return MalformedToken(detail=f"Champs manquants ou invalides ({exc.error_count()}).")


def decode_any(raw: str) -> Union[CheckinPayload, OfflineToken, MalformedToken]:
    """Reconnaît les deux formats (QR préfixé d'abord, puis jeton offline)."""
    if isinstance(raw, str) and raw.startswith(QR_PREFIX):
        return decode_payload(raw)
    return decode_offline_token(raw)
