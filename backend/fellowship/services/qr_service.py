"""
Rendu du code de session en image QR (PNG) pour l'affichage à l'écran.
"""

import io

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from fellowship.services.session_service import get_session
from fellowship.store import DocumentStore


def generate_qr_image(data: str) -> bytes:
    """Génère une image PNG du QR code encodant la chaîne donnée."""
    # version=None : la taille s'adapte à la charge utile base64
    qr = qrcode.QRCode(version=None, error_correction=ERROR_CORRECT_M, box_size=10, border=4)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def session_qr_png(store: DocumentStore, session_id: str) -> bytes:
    """PNG du code émis à la création de la session. Lève ValueError si elle est introuvable."""
    session = get_session(store, session_id)
    if session is None:
        raise ValueError(f"Session {session_id} introuvable.")
    return generate_qr_image(session.qr_code_data)
