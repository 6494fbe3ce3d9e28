"""
Mot du jour : secret quotidien déterministe dérivé de la date et d'un secret partagé.

Fonction pure, sans état : l'émetteur et le valideur obtiennent le même mot sans
se synchroniser, tant qu'ils partagent le secret et le jour calendaire.
"""

import datetime as dt
from typing import Optional, Union

WORDS = (
    "FAITH", "HOPE", "LOVE", "GRACE", "PEACE", "JOY", "TRUST", "MERCY",
    "BLESSED", "PRAISE", "GLORY", "LIGHT", "TRUTH", "WISDOM", "SPIRIT",
    "PRAYER", "WORSHIP", "SERVE", "HONOR", "UNITY", "STRENGTH", "COURAGE",
    "KINDNESS", "PATIENCE", "HUMBLE", "FORGIVE", "ETERNAL", "DIVINE",
    "SACRED", "HOLY", "MIRACLE", "VICTORY", "PROMISE", "COVENANT",
    "SALVATION", "REDEMPTION", "FELLOWSHIP", "COMMUNION", "SANCTUARY",
)


def _string_hash(seed: str) -> int:
    """Hash 32 bits signé h = h*31 + code (mêmes valeurs que le client web)."""
    h = 0
    for char in seed:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def word_of_day(day: Union[dt.date, dt.datetime], secret: Optional[str] = None) -> str:
    """
    Retourne le mot du jour pour une date calendaire.
    Un datetime est ramené à sa date UTC (l'heure n'intervient pas).
    """
    if isinstance(day, dt.datetime):
        if day.tzinfo is not None:
            day = day.astimezone(dt.timezone.utc)
        day = day.date()

    date_str = day.isoformat()  # YYYY-MM-DD
    seed = f"{date_str}-{secret}" if secret else date_str
    return WORDS[abs(_string_hash(seed)) % len(WORDS)]
