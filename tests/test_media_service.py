"""
Tests du traitement des médias : vignettes Pillow et badges QR des stagiaires.
"""

import io

from PIL import Image

from saksham.services.media_service import (
    badge_payload,
    create_thumbnail,
    generate_trainee_badge,
    parse_badge,
)


# --- Helper ---

def make_image(size=(1200, 800), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, "blue").save(buf, format=fmt)
    return buf.getvalue()


# ============================================================
# create_thumbnail
# ============================================================

def test_vignette_reduite_proportions_conservees():
    thumb = create_thumbnail(make_image((1200, 800)), max_edge=200)

    with Image.open(io.BytesIO(thumb)) as img:
        assert img.format == "JPEG"
        assert img.size == (200, 133)


def test_petite_image_non_agrandie():
    thumb = create_thumbnail(make_image((100, 50)), max_edge=200)

    with Image.open(io.BytesIO(thumb)) as img:
        assert img.size == (100, 50)


def test_image_rgba_convertie():
    buf = io.BytesIO()
    Image.new("RGBA", (400, 400), (255, 0, 0, 128)).save(buf, format="PNG")

    assert create_thumbnail(buf.getvalue(), max_edge=100) is not None


def test_contenu_illisible_retourne_none():
    assert create_thumbnail(b"ceci n'est pas une image") is None


# ============================================================
# generate_trainee_badge
# ============================================================

def test_badge_png():
    badge = generate_trainee_badge("t-42")

    with Image.open(io.BytesIO(badge)) as img:
        assert img.format == "PNG"
        assert img.size[0] == img.size[1]


def test_badges_differents_par_stagiaire():
    assert generate_trainee_badge("t-1") != generate_trainee_badge("t-2")


# ============================================================
# badge_payload / parse_badge
# ============================================================

def test_badge_relu_identifiant():
    assert parse_badge(badge_payload("t-42")) == "t-42"
    assert parse_badge(f"  {badge_payload('t-42')}\n") == "t-42"


def test_badge_autre_emetteur():
    assert parse_badge("participant=t-42") is None


def test_badge_sans_identifiant():
    assert parse_badge(badge_payload("")) is None
