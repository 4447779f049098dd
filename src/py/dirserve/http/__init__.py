from .model import HTTPRequest, HTTPResponse, HTTPBodyWriter  # NOQA: F401
from .parser import HTTPParser  # NOQA: F401

# EOF
