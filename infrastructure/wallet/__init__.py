from .issuer import PassCardIssuer, make_qr_png, render_card

__all__ = ["PassCardIssuer", "make_qr_png", "render_card"]
