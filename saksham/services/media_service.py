"""
Traitement des médias terrain : vignettes de photos et badges QR des stagiaires.

La vignette est un confort d'affichage : son absence ne doit jamais empêcher
l'enregistrement de la photo originale.
"""

import io
import logging
from typing import Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from PIL import Image, UnidentifiedImageError

from saksham.config import settings

logger = logging.getLogger(__name__)


def create_thumbnail(content: bytes, max_edge: Optional[int] = None) -> Optional[bytes]:
    """
    Réduit une image pour que son plus grand côté fasse au plus max_edge pixels.
    Retourne un JPEG, ou None si le contenu n'est pas une image lisible.
    """
    max_edge = settings.THUMBNAIL_MAX_EDGE if max_edge is None else max_edge
    try:
        with Image.open(io.BytesIO(content)) as img:
            img = img.convert("RGB")
            img.thumbnail((max_edge, max_edge))
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=70)
            return buf.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Vignette non générée : %s", exc)
        return None


BADGE_PREFIX = "SAKSHAM:"


def badge_payload(trainee_id: str) -> str:
    return f"{BADGE_PREFIX}{trainee_id}"


def parse_badge(decoded_text: str) -> Optional[str]:
    """Identifiant du stagiaire lu sur un badge Saksham, None pour tout autre QR code."""
    decoded_text = (decoded_text or "").strip()
    if not decoded_text.startswith(BADGE_PREFIX):
        return None
    return decoded_text[len(BADGE_PREFIX):] or None


def generate_trainee_badge(trainee_id: str, box_size: int = 8) -> bytes:
    """
    Badge de pointage : image PNG du QR code du stagiaire (voir parse_badge).
    Correction d'erreur M pour rester lisible sur un badge imprimé abîmé.
    """
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=4)
    qr.add_data(badge_payload(trainee_id))
    qr.make(fit=True)

    with io.BytesIO() as buf:
        qr.make_image(fill_color="black", back_color="white").save(buf, format="PNG")
        return buf.getvalue()
