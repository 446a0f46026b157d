__version__: str = "1.0.0"

from .http.model import HTTPRequest, HTTPResponse  # NOQA: F401,E402
from .auth import BasicAuthenticator, NoOpAuthenticator, authenticator  # NOQA: F401,E402
from .routing import Router, normalizeMountPath  # NOQA: F401,E402
from .server import Server, ServerOptions, ServerState, serve, run  # NOQA: F401,E402

# EOF
