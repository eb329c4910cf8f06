"""OIDCAuth - OpenID Connect account authentication helper."""

__version__ = "0.1.0"
