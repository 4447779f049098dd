from .http.model import (
	HTTPRequest,
	HTTPResponse,
)  # NOQA: F401
from .config import ServerConfig  # NOQA: F401
from .services.files import FileService  # NOQA: F401
from .server import run  # NOQA: F401


# EOF
